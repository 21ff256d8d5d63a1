import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"
        MANAGER = "manager", "Manager"
        OPERATOR = "operator", "Operator"
        VIEWER = "viewer", "Viewer"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    role = models.CharField(max_length=32, choices=Role, default=Role.VIEWER)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class ActivityLog(models.Model):
    """Who changed what through the API, with before/after snapshots."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField(null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="core_activity_created_idx"),
            models.Index(fields=["action", "created_at"], name="core_activity_action_idx"),
            models.Index(fields=["entity", "created_at"], name="core_activity_entity_idx"),
            models.Index(fields=["actor", "created_at"], name="core_activity_actor_idx"),
        ]


class EventOutbox(models.Model):
    """Notification events waiting for an external dispatcher."""

    id = models.BigAutoField(primary_key=True)
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    op = models.CharField(max_length=32)
    payload = models.JSONField()
    dispatched_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["dispatched_at", "id"], name="core_outbox_pending_idx"),
            models.Index(fields=["entity", "op"], name="core_outbox_entity_op_idx"),
        ]
