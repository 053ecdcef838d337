from django.contrib import admin

from .models import AuditLog, Media, PromptResponse, SurveyResponse


class PromptResponseInline(admin.TabularInline):
    model = PromptResponse
    extra = 0
    readonly_fields = ("prompt_id", "prompt_type", "repeatable_set_id", "repeatable_set_iteration", "response")
    can_delete = False


@admin.register(SurveyResponse)
class SurveyResponseAdmin(admin.ModelAdmin):
    list_display = ("uuid", "user", "campaign", "survey_id", "epoch_millis", "privacy_state")
    list_filter = ("privacy_state", "campaign")
    search_fields = ("uuid", "user__username", "survey_id")
    inlines = [PromptResponseInline]


@admin.register(Media)
class MediaAdmin(admin.ModelAdmin):
    list_display = ("uuid", "category", "owner", "survey_response", "size", "created_at")
    list_filter = ("category",)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "actor", "campaign", "action")
    list_filter = ("action",)
