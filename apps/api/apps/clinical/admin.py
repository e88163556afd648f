from django.contrib import admin

from .models import Activity, Consultation, Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'gender', 'location', 'age', 'owner', 'last_updated']
    list_filter = ['gender', 'last_updated']
    search_fields = ['name', 'location', 'contact']
    readonly_fields = ['age', 'created_at', 'last_updated']
    fieldsets = [
        ('Personal Information', {
            'fields': ['name', 'gender', 'date_of_birth', 'age']
        }),
        ('Contact', {
            'fields': ['location', 'contact']
        }),
        ('Sync', {
            'fields': ['owner', 'details', 'created_at', 'last_updated']
        }),
    ]


@admin.register(Consultation)
class ConsultationAdmin(admin.ModelAdmin):
    list_display = ['id', 'patient', 'status', 'owner', 'last_updated']
    list_filter = ['status']
    raw_id_fields = ['patient']
    readonly_fields = ['created_at', 'last_updated']


@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ['id', 'activity_type', 'read', 'patient', 'owner', 'last_updated']
    list_filter = ['activity_type', 'read']
    raw_id_fields = ['patient']
    readonly_fields = ['created_at', 'last_updated']
