"""
Tests for FeedClient: reads through the cache and mutations that patch it.

Key test coverage:
1. Likes toggle symmetrically and patch every cached view of the post
2. Comment counts track the comment rows
3. Tags are normalized and survive a concurrent insert of the same name
4. A response for a view the caller navigated away from is dropped
5. Failed or rejected operations leave the store and cache untouched
"""
import asyncio

from django.test import SimpleTestCase

from feed.errors import (
    ConstraintViolation, FetchFailed, Forbidden, InvalidInput, NotAuthenticated,
    NotFound, WriteFailed,
)
from feed.notifications import ERROR, SUCCESS
from feed.viewmodels import ViewDescriptor

from .support import (
    ALICE, BOB, CAROL, FlakyStore, GatedStore, RacingTagStore, VanishingPostStore,
    make_client, seed_post, seeded_store,
)


class LikeTest(SimpleTestCase):

    async def seed(self, store=None):
        self.store = store or seeded_store()
        self.p2 = await seed_post(self.store, BOB.id, 'older', minutes_ago=5)
        self.p1 = await seed_post(self.store, BOB.id, 'newer')
        for user_id in (BOB.id, CAROL.id, 42):
            await self.store.insert('likes', {'post_id': self.p1, 'user_id': user_id})
        self.client = make_client(self.store)

    async def likes_in_store(self, post_id):
        return await self.store.count('likes', {'post_id': post_id})

    async def test_like_patches_every_cached_view(self):
        await self.seed()
        feed = await self.client.global_feed()
        await self.client.post(self.p1)
        self.assertEqual([post.id for post in feed], [self.p1, self.p2])
        self.assertEqual(feed[0].likes_count, 3)

        liked = await self.client.toggle_like(self.p1, currently_liked=False)

        self.assertTrue(liked)
        self.assertEqual(await self.likes_in_store(self.p1), 4)
        p1, p2 = self.client.cache.get(ViewDescriptor.global_feed())
        self.assertEqual(p1.likes_count, 4)
        self.assertTrue(p1.is_liked)
        self.assertEqual(p2.likes_count, 0)
        self.assertFalse(p2.is_liked)
        single, = self.client.cache.get(ViewDescriptor.single_post(self.p1))
        self.assertEqual(single.likes_count, 4)
        self.assertTrue(single.is_liked)

    async def test_like_leaves_other_posts_alone(self):
        await self.seed()
        await self.store.insert('likes', {'post_id': self.p2, 'user_id': ALICE.id})
        await self.client.global_feed()

        await self.client.toggle_like(self.p1, currently_liked=False)

        p1, p2 = self.client.cache.get(ViewDescriptor.global_feed())
        self.assertIn(ALICE.id, p1.like_user_ids)
        self.assertEqual(p2.like_user_ids, (ALICE.id,))
        self.assertTrue(p2.is_liked)

    async def test_like_then_unlike_restores_state(self):
        await self.seed()
        before, _ = await self.client.global_feed()

        await self.client.toggle_like(self.p1, currently_liked=False)
        await self.client.toggle_like(self.p1, currently_liked=True)

        after, _ = self.client.cache.get(ViewDescriptor.global_feed())
        self.assertEqual(set(after.like_user_ids), set(before.like_user_ids))
        self.assertFalse(after.is_liked)
        self.assertEqual(await self.likes_in_store(self.p1), 3)

    async def test_cached_view_matches_a_fresh_read(self):
        await self.seed()
        await self.client.global_feed()
        await self.client.toggle_like(self.p2, currently_liked=False)

        cached = self.client.cache.get(ViewDescriptor.global_feed())
        fresh = await self.client.global_feed(force=True)

        self.assertEqual(
            [(p.id, set(p.like_user_ids), p.is_liked) for p in cached],
            [(p.id, set(p.like_user_ids), p.is_liked) for p in fresh],
        )

    async def test_liking_twice_is_tolerated(self):
        await self.seed()
        await self.store.insert('likes', {'post_id': self.p2, 'user_id': ALICE.id})

        with self.assertLogs('feed.coordinator', level='INFO'):
            liked = await self.client.toggle_like(self.p2, currently_liked=False)

        self.assertTrue(liked)
        self.assertEqual(await self.likes_in_store(self.p2), 1)

    async def test_unliking_a_post_that_is_not_liked(self):
        await self.seed()
        liked = await self.client.toggle_like(self.p2, currently_liked=True)
        self.assertFalse(liked)
        self.assertEqual(await self.likes_in_store(self.p2), 0)

    async def test_like_notifications(self):
        await self.seed()
        await self.client.toggle_like(self.p1, currently_liked=False)
        await self.client.toggle_like(self.p1, currently_liked=True)
        self.assertEqual(
            self.client.notifier.drain(),
            [(SUCCESS, 'Post liked'), (SUCCESS, 'Post unliked')],
        )

    async def test_failed_write_leaves_cache_untouched(self):
        await self.seed(seeded_store(FlakyStore))
        before = await self.client.global_feed()
        self.store.fail('insert', 'likes')

        with self.assertRaises(WriteFailed) as ctx:
            await self.client.toggle_like(self.p1, currently_liked=False)

        self.assertEqual(ctx.exception.context, {'operation': 'toggle_like', 'target': self.p1})
        self.assertEqual(self.client.cache.get(ViewDescriptor.global_feed()), before)
        self.assertEqual(self.client.notifier.last(), str(ctx.exception))

    async def test_like_missing_post(self):
        await self.seed()
        with self.assertRaises(NotFound):
            await self.client.toggle_like(999, currently_liked=False)
        self.assertEqual(await self.store.count('likes'), 3)

    async def test_post_deleted_before_the_like_lands(self):
        await self.seed(seeded_store(VanishingPostStore))
        before = await self.client.global_feed()
        self.store.armed = True

        with self.assertRaises(WriteFailed) as ctx:
            await self.client.toggle_like(self.p1, currently_liked=False)

        self.assertNotIsInstance(ctx.exception, ConstraintViolation)
        self.assertEqual(await self.store.count('likes'), 0)
        self.assertEqual(self.client.cache.get(ViewDescriptor.global_feed()), before)

    async def test_anonymous_viewer_cannot_like(self):
        await self.seed()
        client = make_client(self.store, viewer=None)

        with self.assertRaises(NotAuthenticated):
            await client.toggle_like(self.p1, currently_liked=False)

        self.assertEqual(await self.likes_in_store(self.p1), 3)
        self.assertEqual(client.notifier.drain(), [(ERROR, 'You must be logged in')])


class CommentTest(SimpleTestCase):

    async def seed(self):
        self.store = seeded_store()
        self.post_id = await seed_post(self.store, BOB.id, 'Review my code')
        self.client = make_client(self.store)

    async def test_comment_count_tracks_rows(self):
        await self.seed()
        await self.client.global_feed()
        await self.client.comments(self.post_id)

        for text in ('one', 'two', 'three'):
            await self.client.add_comment(self.post_id, text)

        post, = self.client.cache.get(ViewDescriptor.global_feed())
        rows = await self.store.count('comments', {'post_id': self.post_id})
        self.assertEqual(post.comments_count, rows)
        self.assertEqual(rows, 3)
        cached = self.client.cache.get(ViewDescriptor.post_comments(self.post_id))
        self.assertEqual([c.content for c in cached], ['one', 'two', 'three'])
        self.assertEqual({c.author.username for c in cached}, {'alice'})

    async def test_comment_author_is_the_viewer(self):
        await self.seed()
        comment = await self.client.add_comment(self.post_id, '  looks good  ')
        self.assertEqual(comment.author.id, ALICE.id)
        self.assertEqual(comment.author.avatar, ALICE.avatar)
        self.assertEqual(comment.content, 'looks good')
        self.assertEqual(self.client.notifier.last(), 'Comment added')

    async def test_empty_comment_is_rejected(self):
        await self.seed()
        await self.client.global_feed()
        before = self.client.cache.get(ViewDescriptor.global_feed())

        with self.assertRaises(InvalidInput):
            await self.client.add_comment(self.post_id, '   ')

        self.assertEqual(await self.store.count('comments'), 0)
        self.assertEqual(self.client.cache.get(ViewDescriptor.global_feed()), before)

    async def test_comment_on_missing_post(self):
        await self.seed()
        with self.assertRaises(NotFound):
            await self.client.add_comment(999, 'hello?')
        self.assertEqual(await self.store.count('comments'), 0)

    async def test_comments_of_missing_post(self):
        await self.seed()
        with self.assertRaises(NotFound):
            await self.client.comments(999)
        self.assertNotIn(ViewDescriptor.post_comments(999), self.client.cache)


class CreatePostTest(SimpleTestCase):

    async def test_new_post_heads_cached_feeds(self):
        store = seeded_store()
        older = await seed_post(store, BOB.id, 'older')
        client = make_client(store)
        await client.global_feed()

        post_id = await client.create_post('Hello', code='print(1)', tags=['Python'])

        feed = client.cache.get(ViewDescriptor.global_feed())
        self.assertEqual([post.id for post in feed], [post_id, older])
        self.assertEqual(feed[0].content, 'Hello')
        self.assertEqual(feed[0].tags, ('python',))
        self.assertIn(ViewDescriptor.single_post(post_id), client.cache)
        # Not cached before, so nothing to patch
        self.assertNotIn(ViewDescriptor.user_feed(ALICE.id), client.cache)
        self.assertEqual(client.notifier.last(), 'Post created successfully')

    async def test_tags_normalize_to_one_row(self):
        store = seeded_store()
        client = make_client(store)

        first = await client.create_post('one', tags=[' React ', 'react'])
        second = await client.create_post('two', tags=['REACT', ''])

        self.assertEqual(await store.count('tags', {'name': 'react'}), 1)
        self.assertEqual(await store.count('tags'), 1)
        self.assertEqual((await client.post(first)).tags, ('react',))
        self.assertEqual((await client.post(second)).tags, ('react',))

    async def test_concurrently_created_tag_is_reused(self):
        store = seeded_store(RacingTagStore, racing='python')
        client = make_client(store)

        post_id = await client.create_post('race', tags=['Python', 'django'])

        self.assertEqual(store.tag_inserts, 1)
        self.assertEqual(await store.count('tags', {'name': 'python'}), 1)
        self.assertEqual((await client.post(post_id)).tags, ('django', 'python'))

    async def test_unresolvable_tag_is_skipped(self):
        store = seeded_store(RacingTagStore, racing='python', vanish=True)
        client = make_client(store)

        with self.assertLogs('feed.coordinator', level='WARNING'):
            post_id = await client.create_post('race', tags=['django', 'python'])

        self.assertEqual((await client.post(post_id)).tags, ('django',))

    async def test_empty_description_is_rejected(self):
        store = seeded_store()
        client = make_client(store)
        with self.assertRaises(InvalidInput):
            await client.create_post('   ')
        self.assertEqual(await store.count('posts'), 0)

    async def test_failed_insert(self):
        store = seeded_store(FlakyStore)
        client = make_client(store)
        await client.global_feed()
        store.fail('insert', 'posts')

        with self.assertRaises(WriteFailed):
            await client.create_post('Hello')

        self.assertEqual(client.cache.get(ViewDescriptor.global_feed()), [])

    async def test_unreadable_new_post_invalidates_feeds(self):
        store = seeded_store(FlakyStore)
        client = make_client(store)
        await client.global_feed()
        store.fail('count', 'comments')

        post_id = await client.create_post('Hello')

        self.assertEqual(await store.count('posts'), 1)
        self.assertNotIn(ViewDescriptor.global_feed(), client.cache)
        self.assertEqual([p.id for p in await client.global_feed()], [post_id])

    async def test_anonymous_viewer_cannot_post(self):
        store = seeded_store()
        with self.assertRaises(NotAuthenticated):
            await make_client(store, viewer=None).create_post('Hello')
        self.assertEqual(await store.count('posts'), 0)


class DeletePostTest(SimpleTestCase):

    async def seed(self):
        self.store = seeded_store()
        self.post_id = await seed_post(self.store, ALICE.id, 'mine')
        await self.store.insert('likes', {'post_id': self.post_id, 'user_id': BOB.id})
        await self.store.insert('comments', {'post_id': self.post_id, 'user_id': BOB.id, 'content': 'hi'})

    async def test_author_deletes_post(self):
        await self.seed()
        client = make_client(self.store)
        await client.global_feed()
        await client.comments(self.post_id)

        await client.delete_post(self.post_id)

        self.assertEqual(client.cache.get(ViewDescriptor.global_feed()), [])
        self.assertNotIn(ViewDescriptor.post_comments(self.post_id), client.cache)
        self.assertEqual(await self.store.count('likes'), 0)
        self.assertEqual(await self.store.count('comments'), 0)

    async def test_only_the_author_may_delete(self):
        await self.seed()
        client = make_client(self.store, viewer=BOB)

        with self.assertRaises(Forbidden):
            await client.delete_post(self.post_id)

        self.assertEqual(await self.store.count('posts'), 1)


class FollowTest(SimpleTestCase):

    async def test_follow_and_unfollow(self):
        store = seeded_store()
        bobs = await seed_post(store, BOB.id, 'from bob')
        await seed_post(store, CAROL.id, 'from carol')
        client = make_client(store)
        self.assertEqual(await client.following_feed(), [])

        await client.follow(BOB.id)
        self.assertEqual([p.id for p in await client.following_feed()], [bobs])

        await client.unfollow(BOB.id)
        self.assertEqual(await client.following_feed(), [])

    async def test_follow_twice(self):
        store = seeded_store()
        client = make_client(store)
        await client.follow(BOB.id)
        await client.follow(BOB.id)
        self.assertEqual(await store.count('follows'), 1)

    async def test_cannot_follow_self_or_unknown_user(self):
        client = make_client(seeded_store())
        with self.assertRaises(InvalidInput):
            await client.follow(ALICE.id)
        with self.assertRaises(NotFound):
            await client.follow(99)


class ReadTest(SimpleTestCase):

    async def test_reads_are_served_from_cache(self):
        store = seeded_store()
        client = make_client(store)
        await seed_post(store, BOB.id, 'first')
        self.assertEqual(len(await client.global_feed()), 1)

        await seed_post(store, BOB.id, 'written behind our back')

        self.assertEqual(len(await client.global_feed()), 1)
        self.assertEqual(len(await client.global_feed(force=True)), 2)

    async def test_navigating_back_refetches(self):
        store = seeded_store()
        client = make_client(store)
        first = await seed_post(store, BOB.id, 'first')
        await client.navigate(ViewDescriptor.global_feed())

        second = await seed_post(store, BOB.id, 'second')
        staying = await client.navigate(ViewDescriptor.global_feed())
        await client.navigate(ViewDescriptor.user_feed(ALICE.id))
        back = await client.navigate(ViewDescriptor.global_feed())

        self.assertEqual([p.id for p in staying], [first])
        self.assertEqual([p.id for p in back], [second, first])

    async def test_failed_read_caches_nothing_and_can_be_retried(self):
        store = seeded_store(FlakyStore)
        await seed_post(store, BOB.id, 'post')
        client = make_client(store)
        store.fail('select', 'posts')

        with self.assertRaises(FetchFailed):
            await client.global_feed()
        self.assertNotIn(ViewDescriptor.global_feed(), client.cache)
        self.assertEqual(client.notifier.drain()[0][0], ERROR)

        self.assertEqual(len(await client.global_feed()), 1)

    async def test_response_for_abandoned_view_is_dropped(self):
        store = seeded_store(GatedStore)
        await seed_post(store, 42, 'by 42')
        by_7 = await seed_post(store, 7, 'by 7')
        gate = store.gate(42)
        client = make_client(store)

        slow = asyncio.ensure_future(client.navigate(ViewDescriptor.user_feed(42)))
        for _ in range(5):
            await asyncio.sleep(0)
        fast = await client.navigate(ViewDescriptor.user_feed(7))
        gate.set()
        late = await slow

        self.assertIsNone(late)
        self.assertEqual([p.id for p in fast], [by_7])
        self.assertNotIn(ViewDescriptor.user_feed(42), client.cache)
        self.assertEqual(client.cache.active, ViewDescriptor.user_feed(7))
        self.assertEqual([p.id for p in client.cache.get(ViewDescriptor.user_feed(7))], [by_7])
