from django.urls import path
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r'orders', views.OrderViewSet, basename='order')
router.register(r'disputes', views.DisputeViewSet, basename='dispute')
router.register(r'payment-methods', views.PaymentMethodViewSet, basename='payment-method')
router.register(r'withdrawals', views.WithdrawalViewSet, basename='withdrawal')
router.register(r'wallet/payouts', views.PayoutViewSet, basename='payout')

urlpatterns = [
    path('wallet/', views.WalletView.as_view(), name='wallet'),
] + router.urls
