from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from vendor.models import Vendor
from vendor.permissions import IsVendorOwnerOrStaff

from .models import Order
from .serializers import OrderCreateSerializer, OrderSerializer
from .services import OrderFulfillmentError, OrderService


class CreateOrderView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        vendor = get_object_or_404(Vendor, pk=serializer.validated_data["vendor_id"])
        try:
            order = OrderService.create_order(
                customer=request.user,
                vendor=vendor,
                items=serializer.validated_data["items"],
            )
        except OrderFulfillmentError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class ListOrdersView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        orders = (
            Order.objects.filter(customer=request.user)
            .select_related("vendor")
            .prefetch_related("items")
            .order_by("-created_at")
        )
        return Response(OrderSerializer(orders, many=True).data)


class FulfillOrderView(APIView):
    permission_classes = [IsVendorOwnerOrStaff]

    def post(self, request, pk):
        order = get_object_or_404(Order.objects.select_related("vendor"), pk=pk)
        self.check_object_permissions(request, order)

        try:
            order = OrderService.fulfill_order(order, actor=request.user)
        except OrderFulfillmentError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            {"message": "Order fulfilled successfully", "order": OrderSerializer(order).data},
            status=status.HTTP_200_OK,
        )


class VendorOrdersView(APIView):
    permission_classes = [IsVendorOwnerOrStaff]

    def get(self, request, vendor_id):
        vendor = get_object_or_404(Vendor, pk=vendor_id)
        self.check_object_permissions(request, vendor)

        orders = vendor.orders.prefetch_related("items").order_by("-created_at")
        status_filter = request.query_params.get("status")
        if status_filter:
            orders = orders.filter(status=status_filter)
        return Response(OrderSerializer(orders, many=True).data)
