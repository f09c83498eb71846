import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import server.apps.drive.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='UserQuota',
            fields=[
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='drive_quota', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('quota_bytes', models.BigIntegerField(default=server.apps.drive.models.default_quota_bytes, help_text='Storage quota limit in bytes')),
                ('used_bytes', models.BigIntegerField(default=0, help_text='Currently used storage in bytes')),
            ],
            options={
                'verbose_name': 'User Quota',
                'verbose_name_plural': 'User Quotas',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quota_bytes__gte', 0)), name='drive_quota_bytes_non_negative'),
                    models.CheckConstraint(condition=models.Q(('used_bytes__gte', 0)), name='drive_used_bytes_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Node',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('kind', models.CharField(choices=[('folder', 'Folder'), ('image', 'Image'), ('pdf', 'PDF'), ('note', 'Note')], max_length=16)),
                ('size_bytes', models.BigIntegerField(default=0, help_text='File size in bytes (always 0 for folders)')),
                ('blob_ref', models.CharField(blank=True, default='', help_text='Blob store reference (empty for folders)', max_length=512)),
                ('mime_type', models.CharField(blank=True, default='', max_length=255)),
                ('extension', models.CharField(blank=True, default='', max_length=32)),
                ('is_private', models.BooleanField(default=False)),
                ('is_favorite', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='drive_nodes', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.DO_NOTHING, related_name='children', to='drive.node')),
            ],
            options={
                'verbose_name': 'Node',
                'verbose_name_plural': 'Nodes',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['owner', 'parent'], name='drive_owner_parent_idx'),
                    models.Index(fields=['owner', '-created_at'], name='drive_owner_recent_idx'),
                    models.Index(fields=['owner', 'kind'], name='drive_owner_kind_idx'),
                    models.Index(fields=['owner', 'is_favorite'], name='drive_owner_favorite_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('kind', 'folder')), fields=('owner', 'parent', 'name'), name='drive_folder_name_unique'),
                    models.UniqueConstraint(condition=models.Q(('kind', 'folder'), ('parent__isnull', True)), fields=('owner', 'name'), name='drive_root_folder_name_unique'),
                    models.UniqueConstraint(condition=models.Q(('kind', 'folder'), _negated=True), fields=('owner', 'parent', 'name'), name='drive_file_name_unique'),
                    models.UniqueConstraint(condition=models.Q(models.Q(('kind', 'folder'), _negated=True), ('parent__isnull', True)), fields=('owner', 'name'), name='drive_root_file_name_unique'),
                    models.CheckConstraint(condition=models.Q(('size_bytes__gte', 0)), name='drive_size_non_negative'),
                    models.CheckConstraint(condition=models.Q(models.Q(('kind', 'folder'), ('size_bytes', 0), ('blob_ref', '')), models.Q(models.Q(('kind', 'folder'), _negated=True), models.Q(('blob_ref', ''), _negated=True)), _connector='OR'), name='drive_folder_blob_consistency'),
                ],
            },
        ),
    ]
