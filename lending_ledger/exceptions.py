"""Custom exceptions for Lending Ledger."""


class LendingLedgerError(Exception):
    """Base exception for all Lending Ledger errors."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(LendingLedgerError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ValidationError(LendingLedgerError):
    """Raised when user-supplied input is rejected before it is stored."""
    
    def __init__(self, message: str, field: str = None):
        details = {'field': field} if field else {}
        super().__init__(message, details)


class InvalidLoanError(LendingLedgerError):
    """Raised when the dues engine is called without a usable loan record.
    
    Bad values inside a loan are coerced; this is only for a missing loan
    or one without an interest rate field at all.
    """
    pass


class InvalidInterestBasisError(LendingLedgerError):
    """Raised when an interest basis other than annual/monthly is requested."""
    
    def __init__(self, basis):
        super().__init__(f"Unknown interest basis '{basis}'", {'basis': basis})


class LoanNotFoundError(LendingLedgerError):
    """Raised when a loan cannot be found."""
    
    def __init__(self, loan_id: int = None):
        details = {}
        message = "Loan not found"
        if loan_id is not None:
            details['loan_id'] = loan_id
            message = f"Loan {loan_id} not found"
        super().__init__(message, details)


class CustomerNotFoundError(LendingLedgerError):
    """Raised when a customer cannot be found."""
    
    def __init__(self, customer_id: int = None, name: str = None):
        details = {}
        if customer_id is not None:
            details['customer_id'] = customer_id
        if name:
            details['name'] = name
        
        message = "Customer not found"
        if name:
            message = f"Customer '{name}' not found"
        elif customer_id is not None:
            message = f"Customer with ID {customer_id} not found"
        
        super().__init__(message, details)


class TransactionNotFoundError(LendingLedgerError):
    """Raised when a ledger transaction cannot be found."""
    
    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction {transaction_id} not found",
                         {'transaction_id': transaction_id})
