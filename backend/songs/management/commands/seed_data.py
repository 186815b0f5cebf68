"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data

Everything goes through the service layer, so trending scores end up
exactly where real traffic would have put them.
"""

import random
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User

from songs.models import Song, SongLike, Comment, CommentLike
from songs.services import add_comment, save_song, toggle_comment_like, toggle_song_like


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--songs',
            type=int,
            default=20,
            help='Number of songs to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            CommentLike.objects.all().delete()
            SongLike.objects.all().delete()
            Comment.objects.all().delete()
            Song.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Saving songs...')
        songs = self._create_songs(users, options['songs'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, songs, options['comments'])

        self.stdout.write('Creating likes...')
        self._create_likes(users, songs, comments)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(songs)} songs\n'
            f'  - {len(comments)} comments\n'
            f'  - Likes and trending scores'
        ))

    def _create_users(self, count):
        users = []
        for i in range(count):
            username = f'listener{i+1}'
            user, _ = User.objects.get_or_create(
                username=username,
                defaults={'email': f'{username}@example.com', 'first_name': f'Listener {i+1}'}
            )
            users.append(user)
        return users

    def _create_songs(self, users, count):
        artists = [
            "The Midnight Owls", "Neon Harbor", "Velvet Static", "Paper Comets",
            "Lowland Choir", "Sunday Radio",
        ]
        albums = ["Night Drive", "Static Bloom", "Harbor Lights", "Late Replies", "First Light"]
        songs = []
        for i in range(count):
            song, _ = save_song(random.choice(users), {
                'id': f'seed{i+1:018d}',
                'name': f'Track {i+1}',
                'artist': random.choice(artists),
                'album': random.choice(albums),
                'external_url': f'https://open.spotify.com/track/seed{i+1:018d}',
            })
            songs.append(song)
        return songs

    def _create_comments(self, users, songs, count):
        comment_texts = [
            "This one lives on repeat.",
            "The bridge at 2:10 is unreal.",
            "Not their best, but the production is great.",
            "Who else found this from the trending page?",
            "Perfect late night song.",
            "The live version is even better.",
            "Underrated.",
            "Can't stop humming the chorus.",
        ]

        comments = []
        for i in range(count):
            song = random.choice(songs)

            # 30% chance of being a reply to an existing comment on the song
            parent_id = None
            existing = [c for c in comments if c.song_id == song.id]
            if existing and random.random() < 0.3:
                parent_id = random.choice(existing).id

            node = add_comment(
                random.choice(users),
                song.id,
                random.choice(comment_texts),
                parent_id=parent_id
            )
            comments.append(node['comment'])

        return comments

    def _create_likes(self, users, songs, comments):
        # Each song liked by a random half of the users
        for song in songs:
            for liker in random.sample(users, k=len(users) // 2):
                toggle_song_like(liker, song.id)

        # 30% of comments get a few likes
        for comment in comments:
            if random.random() < 0.3:
                for liker in random.sample(users, k=min(3, len(users))):
                    toggle_comment_like(liker, comment.id)
