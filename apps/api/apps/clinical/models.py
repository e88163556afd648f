"""
Clinical models: patient, consultation, activity

Every record is owned by the user who created it and carries a
server-maintained ``last_updated`` timestamp used for optimistic
concurrency during offline sync. Client fields the server does not
recognise are kept verbatim in ``details``.
"""
from datetime import date
from django.db import models
from django.conf import settings


# ============================================================================
# Enums
# ============================================================================

class GenderChoices(models.TextChoices):
    """Patient gender"""
    MALE = 'male', 'Male'
    FEMALE = 'female', 'Female'
    OTHER = 'other', 'Other'


class ConsultationStatusChoices(models.TextChoices):
    """
    Consultation status.

    Out-of-range values sent by clients are dropped (or rejected when
    SYNC_STRICT_STATUS is on), never stored.
    """
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class ActivityTypeChoices(models.TextChoices):
    """Activity feed entry types"""
    URGENT = 'urgent', 'Urgent'
    NEW_PATIENT = 'new_patient', 'New Patient'
    INFO = 'info', 'Info'


def age_from_date_of_birth(date_of_birth, today=None):
    """
    Whole years elapsed since date_of_birth.

    Truncates on the calendar date (a birthday later this year does not
    count yet); never rounds.
    """
    if date_of_birth is None:
        return None
    today = today or date.today()
    return today.year - date_of_birth.year - (
        (today.month, today.day) < (date_of_birth.month, date_of_birth.day)
    )


# ============================================================================
# Owned records
# ============================================================================

class OwnedRecord(models.Model):
    """
    Abstract base for records scoped to one creating user.

    Fields:
    - id: BigAutoField PK (monotonically assigned permanent identifier)
    - owner: FK -> auth_user
    - details: JSON side-channel for unrecognised client fields
    - last_updated: stamped by the server on every write
    - created_at
    """
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='+',
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text='Client fields outside the recognised schema, stored verbatim'
    )
    last_updated = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True


class Patient(OwnedRecord):
    """
    Patient registered by a community health worker.

    Client field mapping: village -> location, phoneNumber -> contact,
    dateOfBirth -> date_of_birth. ``age`` is derived server-side.
    """
    name = models.CharField(max_length=255, blank=True, default='')
    gender = models.CharField(max_length=10, choices=GenderChoices.choices, blank=True, default='')
    location = models.CharField(max_length=255, blank=True, null=True)
    contact = models.CharField(max_length=50, blank=True, null=True)
    date_of_birth = models.DateField(blank=True, null=True)
    age = models.PositiveIntegerField(blank=True, null=True)

    class Meta:
        db_table = 'patient'
        ordering = ['-last_updated']
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['owner', 'last_updated'], name='idx_patient_owner_updated'),
        ]

    def __str__(self):
        return self.name or f'Patient {self.pk}'


class Consultation(OwnedRecord):
    """
    Consultation recorded for a patient.

    Client field mapping: symptoms -> notes, patientId -> patient.
    """
    patient = models.ForeignKey(
        Patient,
        on_delete=models.CASCADE,
        related_name='consultations'
    )
    notes = models.TextField(blank=True, null=True)
    status = models.CharField(
        max_length=20,
        choices=ConsultationStatusChoices.choices,
        default=ConsultationStatusChoices.PENDING
    )

    class Meta:
        db_table = 'consultation'
        ordering = ['-last_updated']
        verbose_name = 'Consultation'
        verbose_name_plural = 'Consultations'
        indexes = [
            models.Index(fields=['owner', 'last_updated'], name='idx_consult_owner_updated'),
        ]

    def __str__(self):
        return f'Consultation {self.pk} ({self.status})'


class Activity(OwnedRecord):
    """
    Entry in a worker's activity feed, optionally about a patient.
    """
    message = models.CharField(max_length=500, blank=True, null=True)
    activity_type = models.CharField(
        max_length=20,
        choices=ActivityTypeChoices.choices,
        default=ActivityTypeChoices.INFO
    )
    read = models.BooleanField(default=False)
    patient = models.ForeignKey(
        Patient,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='activities'
    )

    class Meta:
        db_table = 'activity'
        ordering = ['-last_updated']
        verbose_name = 'Activity'
        verbose_name_plural = 'Activities'
        indexes = [
            models.Index(fields=['owner', 'last_updated'], name='idx_activity_owner_updated'),
        ]

    def __str__(self):
        return f'{self.activity_type}: {self.message or ""}'
