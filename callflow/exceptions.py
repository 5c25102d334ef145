"""
Call Flow Exceptions

Custom exception classes for flow lookup and storage error handling.
"""

from typing import Optional, List


class CallFlowError(Exception):
    """Base exception for call flow errors"""

    def __init__(self, message: str, phone_number: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phone_number = phone_number


class FlowStoreError(CallFlowError):
    """Exception for flow store transport or query failures"""
    pass


class FlowResolutionError(CallFlowError):
    """Exception for dialed numbers that do not map to exactly one flow"""
    pass


class FlowNotFoundError(FlowResolutionError):
    """Exception for dialed numbers with no active flow"""
    pass


class AmbiguousFlowError(FlowResolutionError):
    """Exception for dialed numbers matching more than one active flow"""

    def __init__(self, message: str, phone_number: Optional[str] = None,
                 flow_ids: Optional[List[str]] = None):
        super().__init__(message, phone_number=phone_number)
        self.flow_ids = flow_ids or []


class InvalidFlowError(CallFlowError):
    """Exception for stored flows whose node list cannot be parsed"""
    pass
