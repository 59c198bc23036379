from django.urls import path

from .views import (
    AcceptOrderView,
    CancelOrderView,
    ConfirmOrderView,
    MarkDeliveredView,
    MarkDispatchedView,
    MarkPreparingView,
    OrdersCollectionView,
    OrdersPingView,
    ProducerOrdersView,
    RejectOrderView,
    RetrieveOrderView,
    UploadPaymentView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("producer/", ProducerOrdersView.as_view(), name="orders-producer"),
    path("<str:code>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<str:code>/accept/", AcceptOrderView.as_view(), name="orders-accept"),
    path("<str:code>/reject/", RejectOrderView.as_view(), name="orders-reject"),
    path("<str:code>/payment/", UploadPaymentView.as_view(), name="orders-payment"),
    path("<str:code>/preparing/", MarkPreparingView.as_view(), name="orders-preparing"),
    path("<str:code>/dispatched/", MarkDispatchedView.as_view(), name="orders-dispatched"),
    path("<str:code>/delivered/", MarkDeliveredView.as_view(), name="orders-delivered"),
    path("<str:code>/confirm/", ConfirmOrderView.as_view(), name="orders-confirm"),
    path("<str:code>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
]
