"""Initial schema for django-divewatch."""

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Dive',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('name', models.CharField(blank=True, default='', help_text='Optional display name', max_length=200)),
                ('manager_name', models.CharField(help_text='Dive manager on duty', max_length=200)),
                ('team_members', models.JSONField(blank=True, default=list, help_text="Ordered list of {'role': ..., 'name': ...}")),
                ('settings', models.JSONField(blank=True, default=dict, help_text='Timer settings; read through get_settings()')),
                ('status', models.CharField(choices=[('active', 'Active'), ('completed', 'Completed')], default='active', max_length=20)),
                ('started_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'ordering': ['-started_at', '-id'],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('status', 'active')),
                        fields=('status',),
                        name='divewatch_single_active_dive',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='Protocol',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('title', models.CharField(max_length=200)),
                ('content', models.TextField()),
            ],
            options={
                'ordering': ['title'],
            },
        ),
        migrations.CreateModel(
            name='Cart',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('cart_number', models.PositiveIntegerField()),
                ('cart_type', models.PositiveSmallIntegerField(default=2, help_text='Number of divers the cart holds')),
                ('diver_names', models.JSONField(default=list)),
                ('status', models.CharField(choices=[('active', 'Active'), ('completed', 'Completed')], default='active', max_length=20)),
                ('started_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('paused_at', models.DateTimeField(blank=True, null=True)),
                ('checkin_location', models.CharField(blank=True, default='', max_length=200)),
                ('dive', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='carts', to='django_divewatch.dive')),
            ],
            options={
                'ordering': ['cart_number', 'id'],
                'indexes': [
                    models.Index(fields=['status'], name='divewatch_cart_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('dive', 'cart_number'), name='divewatch_unique_cart_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CheckIn',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('checked_in_at', models.DateTimeField()),
                ('next_deadline', models.DateTimeField()),
                ('reset_reason', models.TextField(blank=True, default='')),
                ('location', models.CharField(blank=True, default='', max_length=200)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('cart', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='checkins', to='django_divewatch.cart')),
            ],
            options={
                'ordering': ['-checked_in_at', '-id'],
                'indexes': [
                    models.Index(fields=['cart', '-checked_in_at'], name='divewatch_checkin_latest_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Event',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('event_type', models.CharField(choices=[('warning', 'Warning'), ('overdue', 'Overdue'), ('emergency', 'Emergency')], max_length=20)),
                ('status', models.CharField(choices=[('open', 'Open'), ('resolved', 'Resolved')], default='open', max_length=20)),
                ('opened_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('notes', models.JSONField(blank=True, default=list)),
                ('cart', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='django_divewatch.cart')),
            ],
            options={
                'ordering': ['-opened_at', '-id'],
                'indexes': [
                    models.Index(fields=['cart', 'status'], name='divewatch_event_cart_idx'),
                    models.Index(fields=['status'], name='divewatch_event_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Attachment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('filename', models.CharField(max_length=255)),
                ('filepath', models.CharField(max_length=500)),
                ('uploaded_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('cart', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attachments', to='django_divewatch.cart')),
            ],
            options={
                'ordering': ['-uploaded_at', '-id'],
            },
        ),
    ]
