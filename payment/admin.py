from django.contrib import admin, messages
from django.utils.translation import gettext_lazy as _

from .models import PayoutHistory, PayoutRequest, PlatformSetting, VendorEarning, WebhookLog
from .services.errors import PaymentServiceError
from .services.payout import PayoutWorkflow
from .services.platform_settings import PlatformSettingsService


@admin.register(PayoutRequest)
class PayoutRequestAdmin(admin.ModelAdmin):
	list_display = ("id", "vendor", "requested_amount", "status", "version", "transfer_reference", "created_at")
	list_filter = ("status",)
	search_fields = ("vendor__business_name", "transfer_reference", "payment_reference")
	readonly_fields = (
		"vendor",
		"requested_amount",
		"available_balance",
		"status",
		"reviewed_by",
		"reviewed_at",
		"transfer_reference",
		"paystack_transfer_id",
		"paystack_transfer_code",
		"payment_reference",
		"actual_paid_amount",
		"completed_at",
		"failed_at",
		"version",
	)
	actions = ("approve_requests", "reject_requests")

	def has_add_permission(self, request):
		return False

	def has_delete_permission(self, request, obj=None):
		return False

	def approve_requests(self, request, queryset):
		"""Approve PENDING requests through the payout workflow so balances stay consistent."""
		approved = 0
		for payout in queryset:
			try:
				PayoutWorkflow.approve(payout.pk, admin=request.user, admin_notes="Approved from admin")
				approved += 1
			except PaymentServiceError as exc:
				self.message_user(request, _("Could not approve %(id)s: %(err)s") % {"id": payout.pk, "err": str(exc)}, messages.ERROR)
		self.message_user(request, _("%d payout requests approved.") % approved, messages.SUCCESS)

	approve_requests.short_description = "Approve selected payout requests"

	def reject_requests(self, request, queryset):
		rejected = 0
		for payout in queryset:
			try:
				PayoutWorkflow.reject(payout.pk, admin=request.user, reason="Rejected from admin")
				rejected += 1
			except PaymentServiceError as exc:
				self.message_user(request, _("Could not reject %(id)s: %(err)s") % {"id": payout.pk, "err": str(exc)}, messages.ERROR)
		self.message_user(request, _("%d payout requests rejected.") % rejected, messages.SUCCESS)

	reject_requests.short_description = "Reject selected payout requests"


@admin.register(VendorEarning)
class VendorEarningAdmin(admin.ModelAdmin):
	list_display = ("id", "vendor", "order", "gross_amount", "platform_fee", "net_earnings", "status", "available_date")
	list_filter = ("status",)
	search_fields = ("vendor__business_name", "order__order_number")

	def has_add_permission(self, request):
		return False

	def has_change_permission(self, request, obj=None):
		return False

	def has_delete_permission(self, request, obj=None):
		return False


@admin.register(PayoutHistory)
class PayoutHistoryAdmin(admin.ModelAdmin):
	list_display = ("id", "vendor", "amount", "transaction_fee", "net_amount", "status", "payment_reference", "created_at")
	list_filter = ("status",)
	search_fields = ("vendor__business_name", "payment_reference")

	def has_add_permission(self, request):
		return False

	def has_change_permission(self, request, obj=None):
		return False

	def has_delete_permission(self, request, obj=None):
		return False


@admin.register(PlatformSetting)
class PlatformSettingAdmin(admin.ModelAdmin):
	list_display = ("key", "value", "setting_type", "is_public", "version", "updated_by", "updated_at")
	search_fields = ("key",)
	readonly_fields = ("version", "updated_by")

	def get_readonly_fields(self, request, obj=None):
		return self.readonly_fields + ("key",) if obj else self.readonly_fields

	def save_model(self, request, obj, form, change):
		if change:
			PlatformSettingsService.set_value(obj.key, obj.value, updated_by=request.user, description=obj.description)
			return
		obj.updated_by = request.user
		super().save_model(request, obj, form, change)


@admin.register(WebhookLog)
class WebhookLogAdmin(admin.ModelAdmin):
	list_display = ("id", "provider", "event_type", "reference", "processed", "created_at")
	list_filter = ("provider", "processed")
