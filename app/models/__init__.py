from app.models.user import User, DriverService
from app.models.service import Service, Coupon
from app.models.ride import RideRequest
from app.models.payment import Payment
from app.models.wallet import Wallet, WalletHistory

__all__ = [
    "User", "DriverService", "Service", "Coupon",
    "RideRequest", "Payment", "Wallet", "WalletHistory",
]
