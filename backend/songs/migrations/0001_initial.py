import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Song',
            fields=[
                ('id', models.CharField(max_length=255, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=500)),
                ('artist', models.CharField(blank=True, db_index=True, max_length=500, null=True)),
                ('album', models.CharField(blank=True, max_length=500, null=True)),
                ('cover_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('external_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('added_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('trending_score', models.FloatField(db_index=True, default=0.0)),
                ('last_decayed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['-trending_score', '-added_at'],
                'indexes': [models.Index(fields=['name'], name='songs_song_name_idx')],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(trending_score__gte=0),
                        name='song_trending_score_non_negative'
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name='Profile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('display_name', models.CharField(blank=True, max_length=150)),
                ('image_url', models.URLField(blank=True, max_length=500)),
                ('user', models.OneToOneField(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='profile',
                    to=settings.AUTH_USER_MODEL
                )),
            ],
        ),
        migrations.CreateModel(
            name='Comment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('content', models.TextField()),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('author', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='song_comments',
                    to=settings.AUTH_USER_MODEL
                )),
                ('parent', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='replies',
                    to='songs.comment'
                )),
                ('song', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='comments',
                    to='songs.song'
                )),
            ],
            options={
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['song', 'parent', 'created_at'], name='songs_comme_song_thread_idx'),
                    models.Index(fields=['parent', 'created_at'], name='songs_comme_parent_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SongLike',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('liked_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('song', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='likes',
                    to='songs.song'
                )),
                ('user', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='song_likes',
                    to=settings.AUTH_USER_MODEL
                )),
            ],
            options={
                'indexes': [
                    models.Index(fields=['song'], name='songs_songl_song_idx'),
                    models.Index(fields=['user', '-liked_at'], name='songs_songl_user_liked_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'song'), name='unique_like_per_user_per_song')
                ],
            },
        ),
        migrations.CreateModel(
            name='CommentLike',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('comment', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='likes',
                    to='songs.comment'
                )),
                ('user', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='comment_likes',
                    to=settings.AUTH_USER_MODEL
                )),
            ],
            options={
                'indexes': [
                    models.Index(fields=['comment'], name='songs_comml_comment_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'comment'), name='unique_like_per_user_per_comment')
                ],
            },
        ),
    ]
