from django.urls import path
from .views import CreateOrderView, FulfillOrderView, ListOrdersView, VendorOrdersView

urlpatterns = [
    path('create/', CreateOrderView.as_view(), name='order-create'),
    path('orders/', ListOrdersView.as_view(), name='user-orders'),
    path('orders/<uuid:pk>/fulfill/', FulfillOrderView.as_view(), name='order-fulfill'),
    path('vendor/<uuid:vendor_id>/orders/', VendorOrdersView.as_view(), name='vendor-orders'),
]
