"""
Custom exception classes for StoreBot.

This module defines domain-specific exceptions for better error handling
and reporting across the application.
"""

from decimal import Decimal


class CategoryNotFound(Exception):
    """
    Exception raised when a category cannot be found for an owner.

    Attributes:
        category_id: The ID of the category that was not found
        message: Explanation of the error
    """

    def __init__(self, category_id: int, message: str = "Category not found") -> None:
        self.category_id = category_id
        self.message = f"{message}: {category_id}"
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the exception."""
        return f"CategoryNotFound(category_id={self.category_id}, message={self.message})"


class CustomerNotFound(Exception):
    """
    Exception raised when a customer reference no longer resolves.

    Attributes:
        customer_ref: The customer ID that was not found
        message: Explanation of the error
    """

    def __init__(self, customer_ref: int, message: str = "Customer not found") -> None:
        self.customer_ref = customer_ref
        self.message = f"{message}: {customer_ref}"
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the exception."""
        return f"CustomerNotFound(customer_ref={self.customer_ref}, message={self.message})"


class InvalidAmount(Exception):
    """
    Exception raised when a ledger amount is not positive, too large or not in cents.

    Callers validate amounts before touching the ledger, so this signals a
    programming error rather than bad user input.

    Attributes:
        amount: The rejected amount
        message: Explanation of the error
    """

    def __init__(
        self, amount: Decimal, message: str = "Amount must be positive with at most 2 decimals"
    ) -> None:
        self.amount = amount
        self.message = f"{message}: {amount}"
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the exception."""
        return f"InvalidAmount(amount={self.amount}, message={self.message})"


class PaymentProviderError(Exception):
    """
    Exception raised when a payment provider cannot create a charge.

    Attributes:
        provider: Provider key (e.g. "mercadopago_pix")
        reason: The reason for the failure
        message: Explanation of the error
    """

    def __init__(
        self, provider: str, reason: str = "Unknown", message: str = "Payment provider error"
    ) -> None:
        self.provider = provider
        self.reason = reason
        self.message = f"{message} ({provider}): {reason}"
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the exception."""
        return (
            f"PaymentProviderError(provider={self.provider}, "
            f"reason={self.reason}, message={self.message})"
        )


class IntegrityViolation(Exception):
    """
    Exception raised when a stock or balance invariant is observed broken.

    Never caught inside the flow engine.

    Attributes:
        entity: The kind of record involved ("product", "customer")
        entity_id: Its primary key
        detail: What was violated
    """

    def __init__(self, entity: str, entity_id: int, detail: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.detail = detail
        self.message = f"Integrity violation on {entity} {entity_id}: {detail}"
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the exception."""
        return (
            f"IntegrityViolation(entity={self.entity}, entity_id={self.entity_id}, "
            f"detail={self.detail})"
        )
