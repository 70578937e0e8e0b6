from rest_framework import permissions, status
from rest_framework.generics import ListAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import DeviceToken, Notification
from .serializers import DeviceTokenSerializer, NotificationSerializer


class NotificationPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


class NotificationListView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = NotificationSerializer
    pagination_class = NotificationPagination

    def get_queryset(self):
        qs = Notification.objects.filter(user=self.request.user)
        if self.request.query_params.get("unread") in {"1", "true"}:
            qs = qs.filter(is_read=False)
        notification_type = self.request.query_params.get("type")
        if notification_type:
            qs = qs.filter(type=notification_type)
        return qs.order_by("-created_at")


class UnreadCountView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        count = Notification.objects.filter(user=request.user, is_read=False).count()
        return Response({"unread": count})


class NotificationReadView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, pk):
        updated = Notification.objects.filter(id=pk, user=request.user).update(is_read=True)
        if not updated:
            return Response({"detail": "Notification not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response({"id": str(pk), "is_read": True})


class NotificationMarkAllReadView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        updated = Notification.objects.filter(user=request.user, is_read=False).update(is_read=True)
        return Response({"updated": updated}, status=status.HTTP_200_OK)


class DeviceTokenView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = DeviceTokenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        device_token = serializer.save_for(request.user)
        return Response(
            {
                "id": str(device_token.id),
                "device_type": device_token.device_type,
                "is_active": device_token.is_active,
            },
            status=status.HTTP_200_OK,
        )

    def delete(self, request):
        qs = DeviceToken.objects.filter(user=request.user, is_active=True)
        token = (request.data.get("token") or "").strip()
        if token:
            qs = qs.filter(token=token)
        return Response({"deactivated": qs.update(is_active=False)}, status=status.HTTP_200_OK)
