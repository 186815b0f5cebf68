"""
Tests for MusicGrid

Focus areas:
1. Trending score arithmetic (likes, comments, decay, clamping at 0)
2. Like toggles (symmetry, one row per pair, authoritative counts)
3. Comment pages (top-level pagination, reply trees, no N+1)
4. Atomicity (a failed score update leaves no row behind)
"""

from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth.models import AnonymousUser, User
from django.db import DatabaseError, connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from .catalog import TokenCache, track_to_song_fields
from .exceptions import InvalidInput, NotFound, PermissionDenied, StorageError, Unauthenticated
from .models import (
    Comment, CommentLike, Profile, Song, SongLike,
    COMMENT_MAX_LENGTH, TRENDING_COMMENT_WEIGHT, TRENDING_LIKE_WEIGHT,
)
from .queries import (
    build_comment_tree,
    collect_descendant_ids,
    fetch_comment_page,
    fetch_replies,
    get_liked_songs,
    get_liked_songs_for_user,
    get_song_with_stats,
    user_summary,
)
from .services import (
    _insert_like,
    add_comment,
    delete_comment,
    save_song,
    toggle_comment_like,
    toggle_song_like,
)
from .trending import decay_trending_scores, get_trending_songs


def make_song(song_id='S1', name='Song One', score=0.0, **fields):
    return Song.objects.create(id=song_id, name=name, trending_score=score, **fields)


def make_comment(song, author, content='Comment', parent=None, minutes=0):
    """Insert a comment directly, with a controlled created_at."""
    base = timezone.now() - timedelta(days=1)
    return Comment.objects.create(
        song=song,
        author=author,
        parent=parent,
        content=content,
        created_at=base + timedelta(minutes=minutes),
    )


def score_of(song_id):
    return Song.objects.get(id=song_id).trending_score


class TrendingScoreTestCase(TestCase):
    """
    Test the trending score engine.

    CRITICAL: These tests verify that:
    1. Like = +1.0, comment = +0.1, and their reversals
    2. The score never goes negative
    3. Decay halves only songs above the epsilon
    """

    def setUp(self):
        self.u1 = User.objects.create_user('u1', 'u1@test.com', 'pass')
        self.song = make_song('S1')

    def test_like_comment_delete_unlike_sequence(self):
        """0 -> like 1.0 -> comment 1.1 -> delete comment 1.0 -> unlike 0.0"""
        toggle_song_like(self.u1, 'S1')
        self.assertAlmostEqual(score_of('S1'), 1.0)

        node = add_comment(self.u1, 'S1', 'Great track')
        self.assertAlmostEqual(score_of('S1'), 1.1)

        delete_comment(self.u1, node['comment'].id)
        self.assertAlmostEqual(score_of('S1'), 1.0)

        toggle_song_like(self.u1, 'S1')
        self.assertAlmostEqual(score_of('S1'), 0.0)

    def test_unlike_clamps_at_zero(self):
        """A decayed score smaller than the like weight must floor at 0."""
        toggle_song_like(self.u1, 'S1')
        Song.objects.filter(id='S1').update(trending_score=0.25)

        toggle_song_like(self.u1, 'S1')

        self.assertEqual(score_of('S1'), 0.0)

    def test_comment_delete_clamps_at_zero(self):
        node = add_comment(self.u1, 'S1', 'Hello')
        Song.objects.filter(id='S1').update(trending_score=0.0)

        delete_comment(self.u1, node['comment'].id)

        self.assertEqual(score_of('S1'), 0.0)

    def test_score_never_negative_after_mixed_sequence(self):
        u2 = User.objects.create_user('u2', 'u2@test.com', 'pass')
        for _ in range(3):
            toggle_song_like(self.u1, 'S1')
            toggle_song_like(u2, 'S1')
            node = add_comment(u2, 'S1', 'again')
            decay_trending_scores()
            delete_comment(u2, node['comment'].id)
            decay_trending_scores()

        self.assertGreaterEqual(score_of('S1'), 0.0)

    def test_decay_halves_scores_above_epsilon(self):
        make_song('S2', score=8.0)
        make_song('S3', score=0.01)  # exactly the epsilon - untouched
        make_song('S4', score=0.005)

        updated = decay_trending_scores()

        self.assertEqual(updated, 1)
        self.assertAlmostEqual(score_of('S2'), 4.0)
        self.assertEqual(score_of('S3'), 0.01)
        self.assertEqual(score_of('S4'), 0.005)
        self.assertEqual(score_of('S1'), 0.0)

    def test_decay_stamps_last_decayed_at(self):
        make_song('S2', score=2.0)
        now = timezone.now()

        decay_trending_scores(now=now)

        self.assertEqual(Song.objects.get(id='S2').last_decayed_at, now)
        self.assertIsNone(Song.objects.get(id='S1').last_decayed_at)

    def test_decay_twice_halves_twice_by_default(self):
        """At-least-once semantics: overlapping firings both apply."""
        make_song('S2', score=8.0)

        decay_trending_scores()
        decay_trending_scores()

        self.assertAlmostEqual(score_of('S2'), 2.0)

    def test_decay_min_interval_skips_recently_decayed(self):
        make_song('S2', score=8.0)
        now = timezone.now()

        decay_trending_scores(min_interval=timedelta(hours=20), now=now)
        updated = decay_trending_scores(
            min_interval=timedelta(hours=20),
            now=now + timedelta(hours=1)
        )

        self.assertEqual(updated, 0)
        self.assertAlmostEqual(score_of('S2'), 4.0)

        decay_trending_scores(min_interval=timedelta(hours=20), now=now + timedelta(days=1))
        self.assertAlmostEqual(score_of('S2'), 2.0)

    def test_decay_failure_raises_storage_error(self):
        make_song('S2', score=8.0)
        with patch('django.db.models.query.QuerySet.update', side_effect=DatabaseError('boom')):
            with self.assertRaises(StorageError):
                decay_trending_scores()
        self.assertAlmostEqual(score_of('S2'), 8.0)


class TrendingPageTestCase(TestCase):

    def setUp(self):
        self.viewer = User.objects.create_user('viewer', 'v@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        now = timezone.now()
        make_song('low', score=1.0, added_at=now)
        make_song('high', score=5.0, added_at=now)
        make_song('tie_old', score=3.0, added_at=now - timedelta(days=2))
        make_song('tie_new', score=3.0, added_at=now - timedelta(days=1))

    def test_ordered_by_score_then_newest(self):
        page = get_trending_songs(limit=10)
        self.assertEqual(
            [s.id for s in page['songs']],
            ['high', 'tie_new', 'tie_old', 'low']
        )
        self.assertFalse(page['has_more'])
        self.assertIsNone(page['next_offset'])

    def test_pagination(self):
        first = get_trending_songs(limit=3, offset=0)
        second = get_trending_songs(limit=3, offset=3)

        self.assertTrue(first['has_more'])
        self.assertEqual(first['next_offset'], 3)
        self.assertEqual([s.id for s in second['songs']], ['low'])
        self.assertFalse(second['has_more'])

    def test_stats_attached(self):
        SongLike.objects.create(user=self.viewer, song_id='low')
        SongLike.objects.create(user=self.other, song_id='low')
        make_comment(Song.objects.get(id='low'), self.other)

        page = get_trending_songs(limit=10, viewer=self.viewer)
        low = next(s for s in page['songs'] if s.id == 'low')
        high = next(s for s in page['songs'] if s.id == 'high')

        self.assertEqual(low.like_count, 2)
        self.assertEqual(low.comment_count, 1)
        self.assertTrue(low.user_has_liked)
        self.assertFalse(high.user_has_liked)

    def test_anonymous_viewer_never_liked(self):
        SongLike.objects.create(user=self.viewer, song_id='low')
        page = get_trending_songs(limit=10, viewer=AnonymousUser())
        self.assertFalse(any(s.user_has_liked for s in page['songs']))


class LikeToggleTestCase(TestCase):
    """
    Test like toggles.

    These tests verify that:
    1. Toggle twice returns to the original state and count
    2. At most one row per (user, target)
    3. Counts are read back from storage
    """

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.song = make_song('S1')

    def test_toggle_symmetry(self):
        SongLike.objects.create(user=self.other, song=self.song)

        first = toggle_song_like(self.user, 'S1')
        self.assertTrue(first.liked)
        self.assertEqual(first.count, 2)

        second = toggle_song_like(self.user, 'S1')
        self.assertFalse(second.liked)
        self.assertEqual(second.count, 1)

    def test_single_row_per_pair(self):
        toggle_song_like(self.user, 'S1')
        toggle_song_like(self.user, 'S1')
        toggle_song_like(self.user, 'S1')

        self.assertEqual(SongLike.objects.filter(user=self.user, song=self.song).count(), 1)

    def test_duplicate_insert_is_ignored(self):
        """The loser of a concurrent insert must not break the transaction."""
        SongLike.objects.create(user=self.user, song=self.song)

        with transaction.atomic():
            inserted = _insert_like(SongLike, user=self.user, song_id='S1')
            # Transaction still usable after the swallowed IntegrityError
            count = SongLike.objects.filter(song_id='S1').count()

        self.assertFalse(inserted)
        self.assertEqual(count, 1)

    def test_unknown_song(self):
        with self.assertRaises(NotFound):
            toggle_song_like(self.user, 'missing')

    def test_anonymous_rejected(self):
        with self.assertRaises(Unauthenticated):
            toggle_song_like(AnonymousUser(), 'S1')
        with self.assertRaises(Unauthenticated):
            toggle_song_like(None, 'S1')

    def test_failed_score_update_rolls_back_like(self):
        with patch('songs.trending.on_like', side_effect=DatabaseError('boom')):
            with self.assertRaises(StorageError):
                toggle_song_like(self.user, 'S1')

        self.assertFalse(SongLike.objects.filter(user=self.user).exists())
        self.assertEqual(score_of('S1'), 0.0)

    def test_comment_like_toggle_has_no_trending_effect(self):
        comment = make_comment(self.song, self.other)

        liked = toggle_comment_like(self.user, comment.id)
        self.assertEqual((liked.liked, liked.count), (True, 1))

        unliked = toggle_comment_like(self.user, comment.id)
        self.assertEqual((unliked.liked, unliked.count), (False, 0))

        self.assertEqual(score_of('S1'), 0.0)

    def test_comment_like_unknown_comment(self):
        with self.assertRaises(NotFound):
            toggle_comment_like(self.user, 999999)


class LikeCommitTestCase(TransactionTestCase):
    """
    Toggles against real commits (no wrapping test transaction).

    These tests verify that:
    1. A duplicate insert outside any outer transaction is swallowed
    2. Score and like table stay in step across committed toggles
    """

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.song = make_song('S1')

    def test_duplicate_insert_at_top_level(self):
        self.assertTrue(_insert_like(SongLike, user=self.user, song_id='S1'))
        self.assertFalse(_insert_like(SongLike, user=self.user, song_id='S1'))
        self.assertEqual(SongLike.objects.filter(song_id='S1').count(), 1)

    def test_like_unlike_like(self):
        self.assertTrue(toggle_song_like(self.user, 'S1').liked)
        self.assertFalse(toggle_song_like(self.user, 'S1').liked)
        result = toggle_song_like(self.user, 'S1')

        self.assertTrue(result.liked)
        self.assertEqual(result.count, 1)
        self.assertAlmostEqual(score_of('S1'), TRENDING_LIKE_WEIGHT)


class AddCommentTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        Profile.objects.filter(user=self.user).update(
            display_name='Listener', image_url='https://img.example.com/a.png'
        )
        self.user.refresh_from_db()
        self.song = make_song('S1')

    def test_returns_fresh_node(self):
        node = add_comment(self.user, 'S1', '  Nice bassline  ')
        comment = node['comment']

        self.assertEqual(comment.content, 'Nice bassline')
        self.assertEqual(comment.like_count, 0)
        self.assertFalse(comment.current_user_liked)
        self.assertEqual(node['replies'], [])
        self.assertEqual(node['reply_count'], 0)
        self.assertEqual(user_summary(comment.author), {
            'id': self.user.id,
            'name': 'Listener',
            'image': 'https://img.example.com/a.png',
        })

    def test_empty_and_too_long_rejected(self):
        with self.assertRaises(InvalidInput):
            add_comment(self.user, 'S1', '   ')
        with self.assertRaises(InvalidInput):
            add_comment(self.user, 'S1', 'x' * (COMMENT_MAX_LENGTH + 1))

        self.assertFalse(Comment.objects.exists())
        self.assertEqual(score_of('S1'), 0.0)

    def test_max_length_accepted(self):
        node = add_comment(self.user, 'S1', 'x' * COMMENT_MAX_LENGTH)
        self.assertEqual(len(node['comment'].content), COMMENT_MAX_LENGTH)

    def test_unauthenticated_checked_before_validation(self):
        with self.assertRaises(Unauthenticated):
            add_comment(AnonymousUser(), 'S1', '')

    def test_dangling_parent(self):
        with self.assertRaises(NotFound):
            add_comment(self.user, 'S1', 'reply', parent_id=424242)

    def test_parent_on_other_song(self):
        other_song = make_song('S2')
        parent = make_comment(other_song, self.user)
        with self.assertRaises(InvalidInput):
            add_comment(self.user, 'S1', 'reply', parent_id=parent.id)

    def test_unknown_song(self):
        with self.assertRaises(NotFound):
            add_comment(self.user, 'missing', 'hello')

    def test_failed_score_update_rolls_back_comment(self):
        with patch('songs.trending.on_comment_added', side_effect=DatabaseError('boom')):
            with self.assertRaises(StorageError):
                add_comment(self.user, 'S1', 'hello')

        self.assertFalse(Comment.objects.exists())


class CommentPageTestCase(TestCase):
    """
    Test comment pages and tree building.

    CRITICAL: Pagination counts top-level comments only, and a page
    costs a fixed number of queries whatever the thread depth.
    """

    def setUp(self):
        self.u1 = User.objects.create_user('u1', 'u1@test.com', 'pass')
        self.u2 = User.objects.create_user('u2', 'u2@test.com', 'pass')
        self.u3 = User.objects.create_user('u3', 'u3@test.com', 'pass')
        self.song = make_song('S1')

    def test_recent_pagination(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        c2 = make_comment(self.song, self.u1, 'C2', minutes=2)
        c3 = make_comment(self.song, self.u1, 'C3', minutes=3)

        first = fetch_comment_page('S1', sort_by='recent', limit=2, offset=0)
        self.assertEqual([n['comment'].id for n in first['comments']], [c3.id, c2.id])
        self.assertTrue(first['has_more'])
        self.assertEqual(first['total_count'], 3)

        second = fetch_comment_page('S1', sort_by='recent', limit=2, offset=2)
        self.assertEqual([n['comment'].id for n in second['comments']], [c1.id])
        self.assertFalse(second['has_more'])
        self.assertEqual(second['total_count'], 3)

    def test_top_sorts_by_likes(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        c2 = make_comment(self.song, self.u1, 'C2', minutes=2)
        CommentLike.objects.create(user=self.u2, comment=c1)
        CommentLike.objects.create(user=self.u3, comment=c1)

        page = fetch_comment_page('S1', sort_by='top')

        self.assertEqual([n['comment'].id for n in page['comments']], [c1.id, c2.id])
        self.assertEqual(page['comments'][0]['comment'].like_count, 2)

    def test_top_ties_broken_by_newest(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        c2 = make_comment(self.song, self.u1, 'C2', minutes=2)

        page = fetch_comment_page('S1', sort_by='top')

        self.assertEqual([n['comment'].id for n in page['comments']], [c2.id, c1.id])

    def test_total_count_ignores_replies(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        make_comment(self.song, self.u2, 'C2', minutes=2)
        for i in range(5):
            make_comment(self.song, self.u2, f'R{i}', parent=c1, minutes=10 + i)

        page = fetch_comment_page('S1', sort_by='recent', limit=1, offset=0)

        self.assertEqual(page['total_count'], 2)
        self.assertTrue(page['has_more'])
        self.assertEqual(len(page['comments']), 1)

        page = fetch_comment_page('S1', sort_by='recent', limit=1, offset=1)
        self.assertFalse(page['has_more'])
        self.assertEqual(len(page['comments'][0]['replies']), 5)

    def test_replies_oldest_first(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        # Inserted out of chronological order on purpose
        late = make_comment(self.song, self.u2, 'late', parent=c1, minutes=30)
        early = make_comment(self.song, self.u3, 'early', parent=c1, minutes=5)
        middle = make_comment(self.song, self.u2, 'middle', parent=c1, minutes=15)

        page = fetch_comment_page('S1')
        replies = page['comments'][0]['replies']

        self.assertEqual([r['comment'].id for r in replies], [early.id, middle.id, late.id])
        created = [r['comment'].created_at for r in replies]
        self.assertEqual(created, sorted(created))
        self.assertEqual(page['comments'][0]['reply_count'], 3)

    def test_reply_to_reply_nested(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        r1 = make_comment(self.song, self.u2, 'R1', parent=c1, minutes=2)
        r2 = make_comment(self.song, self.u1, 'R2', parent=r1, minutes=3)

        page = fetch_comment_page('S1')

        root = page['comments'][0]
        self.assertEqual(root['replies'][0]['comment'].id, r1.id)
        self.assertEqual(root['replies'][0]['replies'][0]['comment'].id, r2.id)

    def test_scenario_reply_then_delete_parent(self):
        c1 = add_comment(self.u1, 'S1', 'C1')['comment']
        add_comment(self.u1, 'S1', 'C2')
        r1 = add_comment(self.u2, 'S1', 'R1', parent_id=c1.id)['comment']

        page = fetch_comment_page('S1', sort_by='recent')
        c1_node = next(n for n in page['comments'] if n['comment'].id == c1.id)
        self.assertEqual([r['comment'].id for r in c1_node['replies']], [r1.id])
        self.assertEqual(page['total_count'], 2)
        rows_before = Comment.objects.filter(song_id='S1').count()

        delete_comment(self.u1, c1.id)

        self.assertEqual(Comment.objects.filter(song_id='S1').count(), rows_before - 2)
        self.assertFalse(Comment.objects.filter(id=r1.id).exists())
        self.assertEqual(fetch_comment_page('S1')['total_count'], 1)

    def test_current_user_liked(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        r1 = make_comment(self.song, self.u2, 'R1', parent=c1, minutes=2)
        CommentLike.objects.create(user=self.u3, comment=r1)

        as_u3 = fetch_comment_page('S1', viewer=self.u3)
        as_anon = fetch_comment_page('S1', viewer=AnonymousUser())

        self.assertFalse(as_u3['comments'][0]['comment'].current_user_liked)
        self.assertTrue(as_u3['comments'][0]['replies'][0]['comment'].current_user_liked)
        self.assertEqual(as_u3['comments'][0]['replies'][0]['comment'].like_count, 1)
        self.assertFalse(as_anon['comments'][0]['replies'][0]['comment'].current_user_liked)

    def test_other_songs_not_mixed_in(self):
        other = make_song('S2')
        make_comment(other, self.u1, 'elsewhere')
        make_comment(self.song, self.u1, 'here')

        page = fetch_comment_page('S1')

        self.assertEqual(page['total_count'], 1)
        self.assertEqual(page['comments'][0]['comment'].content, 'here')

    def test_invalid_sort(self):
        with self.assertRaises(InvalidInput):
            fetch_comment_page('S1', sort_by='oldest')

    def test_empty_song(self):
        page = fetch_comment_page('S1')
        self.assertEqual(page, {'comments': [], 'has_more': False, 'total_count': 0})

    def test_no_n_plus_one_queries(self):
        """
        A page of 5 threads, each 6 replies deep, must NOT cost a query per
        reply or per level.
        """
        for t in range(5):
            parent = make_comment(self.song, self.u1, f'T{t}', minutes=t * 10)
            for depth in range(6):
                parent = make_comment(
                    self.song, self.u2, f'T{t}-{depth}', parent=parent, minutes=t * 10 + depth + 1
                )

        with CaptureQueriesContext(connection) as context:
            page = fetch_comment_page('S1', sort_by='recent', limit=5, viewer=self.u3)

        # count + page + closure + descendants
        self.assertLessEqual(len(context), 4,
            f"Expected <=4 queries, got {len(context)}. Queries: {[q['sql'][:100] for q in context]}")

        deepest = page['comments'][0]
        for _ in range(6):
            self.assertEqual(len(deepest['replies']), 1)
            deepest = deepest['replies'][0]
        self.assertEqual(deepest['replies'], [])

    def test_collect_descendant_ids(self):
        c1 = make_comment(self.song, self.u1, 'C1')
        c2 = make_comment(self.song, self.u1, 'C2')
        r1 = make_comment(self.song, self.u2, 'R1', parent=c1)
        r2 = make_comment(self.song, self.u2, 'R2', parent=r1)
        make_comment(self.song, self.u2, 'R3', parent=c2)

        self.assertEqual(sorted(collect_descendant_ids([c1.id])), sorted([r1.id, r2.id]))
        self.assertEqual(collect_descendant_ids([]), [])

    def test_build_comment_tree_keeps_root_order(self):
        c1 = make_comment(self.song, self.u1, 'C1', minutes=1)
        c2 = make_comment(self.song, self.u1, 'C2', minutes=2)

        tree = build_comment_tree([c2, c1], [])

        self.assertEqual([n['comment'].id for n in tree], [c2.id, c1.id])


class FetchRepliesTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.song = make_song('S1')
        self.root = make_comment(self.song, self.user, 'root')
        self.replies = [
            make_comment(self.song, self.user, f'R{i}', parent=self.root, minutes=i + 1)
            for i in range(5)
        ]
        self.nested = make_comment(self.song, self.user, 'nested', parent=self.replies[0], minutes=20)

    def test_pages_direct_replies_oldest_first(self):
        first = fetch_replies(self.root.id, limit=2, offset=0)

        self.assertEqual(
            [n['comment'].id for n in first['comments']],
            [self.replies[0].id, self.replies[1].id]
        )
        self.assertEqual(first['total_count'], 5)
        self.assertTrue(first['has_more'])
        # Subtree of each reply is expanded
        self.assertEqual(first['comments'][0]['replies'][0]['comment'].id, self.nested.id)

        last = fetch_replies(self.root.id, limit=2, offset=4)
        self.assertEqual([n['comment'].id for n in last['comments']], [self.replies[4].id])
        self.assertFalse(last['has_more'])

    def test_unknown_comment(self):
        with self.assertRaises(NotFound):
            fetch_replies(987654)


class DeleteCommentTestCase(TestCase):

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.song = make_song('S1')

    def test_only_author_may_delete(self):
        node = add_comment(self.author, 'S1', 'mine')
        with self.assertRaises(PermissionDenied):
            delete_comment(self.other, node['comment'].id)
        self.assertTrue(Comment.objects.filter(id=node['comment'].id).exists())

    def test_not_found_is_distinct(self):
        with self.assertRaises(NotFound):
            delete_comment(self.author, 123456)

    def test_anonymous_rejected(self):
        node = add_comment(self.author, 'S1', 'mine')
        with self.assertRaises(Unauthenticated):
            delete_comment(AnonymousUser(), node['comment'].id)

    def test_cascade_removes_subtree_and_likes_with_single_decrement(self):
        root = add_comment(self.author, 'S1', 'root')['comment']
        r1 = add_comment(self.other, 'S1', 'r1', parent_id=root.id)['comment']
        r2 = add_comment(self.other, 'S1', 'r2', parent_id=r1.id)['comment']
        r3 = add_comment(self.author, 'S1', 'r3', parent_id=root.id)['comment']
        for comment in (root, r1, r2, r3):
            toggle_comment_like(self.other, comment.id)

        score_before = score_of('S1')
        self.assertAlmostEqual(score_before, 4 * TRENDING_COMMENT_WEIGHT)

        result = delete_comment(self.author, root.id)

        self.assertEqual(result['deleted'], 4)
        self.assertEqual(result['song_id'], 'S1')
        self.assertFalse(Comment.objects.exists())
        self.assertFalse(CommentLike.objects.exists())
        self.assertAlmostEqual(score_of('S1'), score_before - TRENDING_COMMENT_WEIGHT)

    def test_deleting_a_reply_keeps_parent(self):
        root = add_comment(self.author, 'S1', 'root')['comment']
        reply = add_comment(self.other, 'S1', 'reply', parent_id=root.id)['comment']

        delete_comment(self.other, reply.id)

        self.assertTrue(Comment.objects.filter(id=root.id).exists())
        self.assertEqual(fetch_comment_page('S1')['comments'][0]['replies'], [])


class SongTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')

    def test_save_is_idempotent(self):
        song, created = save_song(self.user, {'id': 'T1', 'name': 'First', 'artist': 'A'})
        again, created_again = save_song(self.user, {'id': 'T1', 'name': 'Renamed'})

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(again.id, song.id)
        self.assertEqual(Song.objects.count(), 1)
        self.assertEqual(Song.objects.get(id='T1').name, 'First')

    def test_save_requires_id_and_name(self):
        with self.assertRaises(InvalidInput):
            save_song(self.user, {'name': 'No id'})
        with self.assertRaises(InvalidInput):
            save_song(self.user, {'id': 'T1', 'name': '  '})

    def test_save_requires_user(self):
        with self.assertRaises(Unauthenticated):
            save_song(None, {'id': 'T1', 'name': 'x'})

    def test_song_detail_stats(self):
        make_song('T1')
        toggle_song_like(self.user, 'T1')
        add_comment(self.user, 'T1', 'hi')

        song = get_song_with_stats('T1', self.user)

        self.assertEqual(song.like_count, 1)
        self.assertEqual(song.comment_count, 1)
        self.assertTrue(song.user_has_liked)
        self.assertAlmostEqual(song.trending_score, TRENDING_LIKE_WEIGHT + TRENDING_COMMENT_WEIGHT)

    def test_song_detail_missing(self):
        with self.assertRaises(NotFound):
            get_song_with_stats('nope')

    def test_track_to_song_fields(self):
        track = {
            'id': 'abc',
            'name': 'Song',
            'artists': [{'name': 'One'}, {'name': 'Two'}],
            'album': {'name': 'LP', 'images': [{'url': 'https://img/1.jpg'}, {'url': 'https://img/2.jpg'}]},
            'external_urls': {'spotify': 'https://open.spotify.com/track/abc'},
        }
        self.assertEqual(track_to_song_fields(track), {
            'id': 'abc',
            'name': 'Song',
            'artist': 'One, Two',
            'album': 'LP',
            'cover_url': 'https://img/1.jpg',
            'external_url': 'https://open.spotify.com/track/abc',
        })

    def test_track_to_song_fields_sparse(self):
        fields = track_to_song_fields({'id': 'x', 'name': 'Bare'})
        self.assertIsNone(fields['artist'])
        self.assertIsNone(fields['album'])
        self.assertIsNone(fields['cover_url'])
        self.assertIsNone(fields['external_url'])


class LikedSongsTestCase(TestCase):

    def setUp(self):
        self.owner = User.objects.create_user('owner', 'o@test.com', 'pass')
        self.viewer = User.objects.create_user('viewer', 'v@test.com', 'pass')
        now = timezone.now()
        for i, song_id in enumerate(['A', 'B', 'C']):
            make_song(song_id)
            SongLike.objects.create(user=self.owner, song_id=song_id, liked_at=now + timedelta(minutes=i))
        SongLike.objects.create(user=self.viewer, song_id='B')

    def test_own_likes_newest_first(self):
        page = get_liked_songs(self.owner, limit=2)

        self.assertEqual([s.id for s in page['songs']], ['C', 'B'])
        self.assertTrue(all(s.user_has_liked for s in page['songs']))
        self.assertTrue(page['has_more'])
        self.assertEqual(page['next_offset'], 2)

    def test_other_users_likes_from_viewer_side(self):
        page = get_liked_songs_for_user(self.owner.id, viewer=self.viewer)

        liked = {s.id: s.user_has_liked for s in page['songs']}
        self.assertEqual(liked, {'A': False, 'B': True, 'C': False})
        self.assertEqual(next(s for s in page['songs'] if s.id == 'B').like_count, 2)

    def test_unknown_profile(self):
        with self.assertRaises(NotFound):
            get_liked_songs_for_user(999999)


class TokenCacheTestCase(TestCase):

    def setUp(self):
        self.calls = 0

    def refresher(self):
        self.calls += 1
        return f'token-{self.calls}', 3600

    def test_caches_until_margin(self):
        cache = TokenCache(self.refresher, safety_margin=60)
        now = timezone.now()

        self.assertEqual(cache.get(now), 'token-1')
        self.assertEqual(cache.get(now + timedelta(seconds=3500)), 'token-1')
        self.assertEqual(self.calls, 1)

        # Inside the safety margin -> refresh
        self.assertEqual(cache.get(now + timedelta(seconds=3541)), 'token-2')
        self.assertEqual(self.calls, 2)

    def test_invalidate_forces_refresh(self):
        cache = TokenCache(self.refresher, safety_margin=0)
        cache.get()
        cache.invalidate()

        self.assertFalse(cache.is_valid())
        self.assertEqual(cache.get(), 'token-2')

    def test_failed_refresh_leaves_cache_empty(self):
        def broken():
            raise RuntimeError('catalog down')

        cache = TokenCache(self.refresher, safety_margin=60)
        cache.get(timezone.now() - timedelta(hours=2))
        cache._refresher = broken

        with self.assertRaises(RuntimeError):
            cache.get()
        self.assertIsNone(cache.token)
        self.assertFalse(cache.is_valid())


class ApiTestCase(TestCase):
    """End-to-end checks of the HTTP surface and its wire format."""

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.song = make_song('S1')

    def test_comment_page_shape(self):
        c1 = make_comment(self.song, self.user, 'C1', minutes=1)
        make_comment(self.song, self.other, 'R1', parent=c1, minutes=2)

        response = self.client.get('/api/songs/S1/comments/', {'sort': 'recent', 'limit': 5})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['totalCount'], 1)
        self.assertFalse(body['hasMore'])
        node = body['comments'][0]
        self.assertEqual(node['content'], 'C1')
        self.assertEqual(node['user'], {'id': self.user.id, 'name': 'user', 'image': None})
        self.assertEqual(node['likes'], 0)
        self.assertFalse(node['currentUserLiked'])
        self.assertEqual(node['replyCount'], 1)
        self.assertEqual(node['replies'][0]['content'], 'R1')
        self.assertEqual(node['replies'][0]['parentId'], c1.id)

    def test_invalid_sort_is_400(self):
        response = self.client.get('/api/songs/S1/comments/', {'sort': 'best'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_read_storage_failure_returns_empty_page(self):
        with patch('songs.queries.count_top_level_comments', side_effect=DatabaseError('down')):
            response = self.client.get('/api/songs/S1/comments/')

        self.assertEqual(response.status_code, 503)
        body = response.json()
        self.assertEqual(body['comments'], [])
        self.assertFalse(body['hasMore'])
        self.assertEqual(body['totalCount'], 0)
        self.assertIn('error', body)

    def test_mutations_require_authentication(self):
        response = self.client.post('/api/songs/S1/comments/', {'content': 'hi'}, format='json')
        self.assertIn(response.status_code, (401, 403))
        response = self.client.post('/api/songs/S1/like/')
        self.assertIn(response.status_code, (401, 403))
        self.assertFalse(Comment.objects.exists())

    def test_add_comment_and_toggle_like(self):
        self.client.force_authenticate(self.user)

        response = self.client.post('/api/songs/S1/comments/', {'content': ' hello '}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['content'], 'hello')
        self.assertEqual(response.json()['replies'], [])

        response = self.client.post('/api/songs/S1/like/')
        self.assertEqual(response.json(), {'liked': True, 'count': 1})
        response = self.client.post('/api/songs/S1/like/')
        self.assertEqual(response.json(), {'liked': False, 'count': 0})

    def test_blank_comment_is_400(self):
        self.client.force_authenticate(self.user)
        response = self.client.post('/api/songs/S1/comments/', {'content': '   '}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_delete_by_non_author_is_403(self):
        comment = make_comment(self.song, self.user)
        self.client.force_authenticate(self.other)

        response = self.client.delete(f'/api/comments/{comment.id}/')

        self.assertEqual(response.status_code, 403)
        self.assertTrue(Comment.objects.filter(id=comment.id).exists())

    def test_delete_missing_is_404(self):
        self.client.force_authenticate(self.user)
        response = self.client.delete('/api/comments/999999/')
        self.assertEqual(response.status_code, 404)

    def test_save_song_from_track_payload(self):
        self.client.force_authenticate(self.user)
        track = {'id': 'T9', 'name': 'Ninth', 'artists': [{'name': 'Band'}]}

        first = self.client.post('/api/songs/', {'track': track}, format='json')
        second = self.client.post('/api/songs/', {'track': track}, format='json')

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.json()['artist'], 'Band')
        self.assertEqual(Song.objects.filter(id='T9').count(), 1)

    def test_trending_endpoint(self):
        make_song('S2', score=3.0)
        response = self.client.get('/api/trending/', {'limit': 1})

        body = response.json()
        self.assertEqual([s['id'] for s in body['songs']], ['S2'])
        self.assertTrue(body['hasMore'])
        self.assertEqual(body['nextOffset'], 1)
        self.assertEqual(body['songs'][0]['likeCount'], 0)

    @override_settings(CRON_SECRET='s3cret')
    def test_decay_endpoint_requires_secret(self):
        make_song('S2', score=4.0)

        rejected = self.client.get('/api/cron/decay/')
        self.assertEqual(rejected.status_code, 401)
        self.assertAlmostEqual(score_of('S2'), 4.0)

        accepted = self.client.get('/api/cron/decay/', HTTP_AUTHORIZATION='Bearer s3cret')
        self.assertEqual(accepted.json(), {'success': True, 'updated': 1})
        self.assertAlmostEqual(score_of('S2'), 2.0)
