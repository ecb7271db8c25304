"""
Custom managers for the accounts app.

UserManager handles email-identified user creation. AccountQuerySet holds
the selections the compliance sweeps and takeover workflow rely on, so the
filters live next to the model they describe.
"""

from __future__ import annotations

from datetime import timedelta

from django.contrib.auth.models import BaseUserManager
from django.db import models

from accounts.choices import AccountKind, AccountStatus


class UserManager(BaseUserManager):
    """
    Manager for User with email as the primary identifier.

    Usage:
        user = User.objects.create_user(email="payer@example.com", password="pw")
        admin = User.objects.create_superuser(email="ops@example.com", password="pw")
    """

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("The Email field must be set")

        email = self.normalize_email(email)
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)


class AccountQuerySet(models.QuerySet):
    """Selections over billing accounts."""

    def providers(self):
        return self.filter(kind=AccountKind.PROVIDER)

    def subscribers(self):
        return self.filter(kind=AccountKind.SUBSCRIBER)

    def active(self):
        return self.filter(status=AccountStatus.ACTIVE)

    def overdue_for(self, days: int, now):
        """Accounts whose unresolved platform payment is at least ``days`` old."""
        return self.filter(payment_overdue_since__lte=now - timedelta(days=days))
