from django.urls import path
from .views import OrdersPingView, OrdersCollectionView, MyOrdersView, RetrieveOrderView
from .views import AdminOrdersView, AdminOrderStatusView
from .views import ProductListView, ProductDetailView
from .views import ProductCategoriesView, ProductBrandsView, FeaturedProductsView
app_name = "orders"

urlpatterns = [
    path("orders/ping/", OrdersPingView.as_view(), name="ping"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # POST create
    path("orders/my/", MyOrdersView.as_view(), name="orders-my"),
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("admin/orders/", AdminOrdersView.as_view(), name="admin-orders"),
    path("admin/order/<uuid:oid>/status/", AdminOrderStatusView.as_view(), name="admin-order-status"),
    path("products/", ProductListView.as_view(), name="products"),
    # fixed names must come before the product id catch-all
    path("products/categories/", ProductCategoriesView.as_view(), name="products-categories"),
    path("products/brands/", ProductBrandsView.as_view(), name="products-brands"),
    path("products/featured/", FeaturedProductsView.as_view(), name="products-featured"),
    path("products/<str:product_id>/", ProductDetailView.as_view(), name="products-detail"),
]
