"""Failure types raised (or returned) by the order and inventory services.

Every error carries a stable ``code`` and the structured fields a caller needs
to build its own message; views turn them into JSON via ``to_dict()``.
"""


class StorefrontError(Exception):
    code = 'storefront_error'
    status_code = 500
    message = 'Unexpected storefront error'

    def __init__(self, message=None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def __getattr__(self, name):
        try:
            return self.__dict__['details'][name]
        except KeyError:
            raise AttributeError(name) from None

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        payload.update(self.details)
        return payload


class ValidationError(StorefrontError):
    code = 'validation_error'
    status_code = 400
    message = 'Invalid request'


class BusinessRuleError(StorefrontError):
    """Expected rejection; callers show it to the user, it is not a fault."""
    code = 'business_rule'
    status_code = 409


class InsufficientStock(BusinessRuleError):
    code = 'insufficient_stock'
    message = 'Not enough stock available'

    def __init__(self, sku, requested=None, available=None):
        super().__init__(
            f'Only {available} of {sku} available' if available is not None
            else f'Not enough stock for {sku}',
            sku=sku, requested=requested, available=available,
        )


class OutOfDeliveryRange(BusinessRuleError):
    code = 'out_of_delivery_range'
    status_code = 422
    message = 'Address is outside every delivery zone'


class AddressNotFound(BusinessRuleError):
    code = 'address_not_found'
    status_code = 422
    message = 'Delivery address could not be found'


class BelowZoneMinimum(BusinessRuleError):
    code = 'below_zone_minimum'
    status_code = 422
    message = 'Order is below the minimum quantity for this delivery zone'


class AlreadyPending(BusinessRuleError):
    code = 'refund_already_pending'
    message = 'A refund request is already pending for this order'


class NothingRefundable(BusinessRuleError):
    code = 'nothing_refundable'
    message = 'This order has already been fully refunded'


class AmountExceedsRefundable(BusinessRuleError):
    code = 'amount_exceeds_refundable'
    status_code = 422
    message = 'Refund amount exceeds the refundable balance'


class NoPaymentReference(BusinessRuleError):
    code = 'no_payment_reference'
    status_code = 422
    message = 'Order has no gateway payment; refund it manually'


class RefundAlreadyResolved(BusinessRuleError):
    code = 'refund_already_resolved'
    message = 'Refund request has already been processed'


class InvalidTransition(BusinessRuleError):
    code = 'invalid_transition'
    message = 'Order cannot move to that status'


class OrderNotFound(BusinessRuleError):
    code = 'order_not_found'
    status_code = 404
    message = 'Order not found'


class RefundNotFound(BusinessRuleError):
    code = 'refund_not_found'
    status_code = 404
    message = 'Refund request not found'


class ReservationNotFound(BusinessRuleError):
    code = 'reservation_not_found'
    status_code = 404
    message = 'Reservation not found'


class ExternalServiceError(StorefrontError):
    code = 'external_service'
    status_code = 502
    message = 'External service unavailable, please try again'


class GatewayError(ExternalServiceError):
    code = 'gateway_error'
    message = 'Payment provider unavailable, please try again'


class GeocoderError(ExternalServiceError):
    code = 'geocoder_error'
    status_code = 503
    message = 'Address lookup unavailable, please try again'


class IntegrityViolation(StorefrontError):
    code = 'integrity_violation'
    status_code = 500
    message = 'Data integrity violation'


class SignatureError(StorefrontError):
    code = 'invalid_signature'
    status_code = 400
    message = 'Invalid webhook signature'


class ProductNotFound(BusinessRuleError):
    code = 'product_not_found'
    status_code = 404
    message = 'Product not found'


class InvalidDiscountCode(BusinessRuleError):
    """``reason`` says which rule the code failed (expired, usage_limit_reached, ...)."""
    code = 'invalid_discount_code'
    status_code = 422
    message = 'Discount code cannot be used'


class DiscountCodeNotFound(BusinessRuleError):
    code = 'discount_code_not_found'
    status_code = 404
    message = 'Discount code not found'
