from django.contrib import admin

from .models import Campaign, CampaignMembership


class CampaignMembershipInline(admin.TabularInline):
    model = CampaignMembership
    extra = 0
    raw_id_fields = ("user",)


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ("urn", "name", "privacy_state", "running_state", "editable_responses", "created_at")
    list_filter = ("privacy_state", "running_state")
    search_fields = ("urn", "name")
    inlines = [CampaignMembershipInline]
