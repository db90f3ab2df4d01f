from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

# ==============================================================================
# DRF ROUTER
# ==============================================================================
router = DefaultRouter()
router.register(r'users', views.CustomUserViewSet, basename='user')
router.register(r'table-types', views.TableTypeViewSet, basename='table-type')
router.register(r'tables', views.TableViewSet, basename='table')
router.register(r'menu-categories', views.MenuCategoryViewSet, basename='menu-category')
router.register(r'menu-items', views.MenuItemViewSet, basename='menu-item')
router.register(r'orders', views.OrderViewSet, basename='order')
router.register(r'bills', views.BillViewSet, basename='bill')
router.register(r'tax-settings', views.TaxSettingViewSet, basename='tax-setting')
router.register(r'reservations', views.ReservationViewSet, basename='reservation')

# ==============================================================================
# URL PATTERNS
# ==============================================================================
app_name = 'dining'

urlpatterns = [
    # --------------------------------------------------------------------------
    # DASHBOARDS
    # --------------------------------------------------------------------------
    path('dashboard/', views.dashboard, name='dashboard'),
    path('kitchen/realtime/', views.kitchen_realtime, name='kitchen-realtime'),

    # --------------------------------------------------------------------------
    # REPORTS
    # --------------------------------------------------------------------------
    path('reports/sales/', views.sales, name='sales-report'),

    # --------------------------------------------------------------------------
    # REST RESOURCES
    # --------------------------------------------------------------------------
    path('', include(router.urls)),
]
