from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "service_request": [
        {"key": "pending", "label": "Pending", "description": "Waiting for the contractor to quote."},
        {"key": "quote_sent", "label": "Quote sent", "description": "A quote is waiting for the client."},
        {"key": "rejected", "label": "Rejected", "description": "The contractor declined the request."},
        {"key": "accepted", "label": "Accepted", "description": "A quote was accepted and an order exists."},
    ],
    "quote": [
        {"key": "pending", "label": "Pending", "description": "Waiting for the client to respond."},
        {"key": "renegotiating", "label": "Renegotiating", "description": "The client asked for changes."},
        {"key": "accepted", "label": "Accepted", "description": "The client accepted the quote."},
        {"key": "rejected", "label": "Rejected", "description": "The contractor declined the request."},
    ],
    "service_order": [
        {"key": "scheduled", "label": "Scheduled", "description": "Work is booked for the agreed window."},
        {"key": "in_progress", "label": "In progress", "description": "Work has started."},
        {"key": "completed", "label": "Completed", "description": "Work finished and billed."},
        {"key": "canceled", "label": "Canceled", "description": "The order will not be carried out."},
    ],
    "bill": [
        {"key": "pending", "label": "Pending", "description": "Waiting for payment."},
        {"key": "disputed", "label": "Disputed", "description": "The client disputed the amount."},
        {"key": "paid", "label": "Paid", "description": "Payment recorded."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "registered": "Account created successfully.",
        "logged_in": "Login successful.",
        "request_created": "Service request created successfully.",
        "photos_uploaded": "Photos uploaded successfully.",
        "quote_created": "Quote created successfully.",
        "request_rejected": "Request rejected.",
        "quote_response_saved": "Response saved successfully.",
        "order_completed": "Order completed and bill created.",
        "bill_response_saved": "Response saved successfully.",
    },
    "error": {
        "auth_required": "Access denied. No token provided.",
        "auth_invalid_token": "Invalid or expired token.",
        "auth_user_not_found": "User not found.",
        "auth_invalid_credentials": "Invalid credentials.",
        "auth_missing_credentials": "Provide an email or phone number and a password.",
        "email_already_registered": "Email already registered.",
        "phone_already_registered": "Phone number already registered.",
        "email_invalid": "Invalid email format.",
        "phone_invalid": "Invalid phone number format.",
        "password_too_short": "Password must be at least 6 characters long.",
        "card_number_invalid": "Credit card number must be 13-19 digits.",
        "card_exp_month_invalid": "Invalid expiration month.",
        "card_exp_year_invalid": "Invalid expiration year.",
        "card_expired": "The card has expired.",
        "card_cvv_invalid": "Invalid CVV.",
        "card_unreadable": "Stored card details could not be read.",
        "role_invalid": "Role must be client or contractor.",
        "permission_denied": "Access denied.",
        "client_role_required": "Access denied. Client role required.",
        "contractor_role_required": "Access denied. Contractor role required.",
        "bill_revise_contractor_only": "Only the contractor can revise bills.",
        "bill_pay_client_only": "Only clients can pay or dispute bills.",
        "not_owner": "This record belongs to another client.",
        "not_found": "Resource not found.",
        "user_not_found": "User not found.",
        "service_request_not_found": "Service request not found.",
        "quote_not_found": "Quote not found.",
        "service_order_not_found": "Order not found.",
        "bill_not_found": "Bill not found.",
        "validation_error": "Validation failed.",
        "fields_required": "Missing required fields.",
        "cleaning_type_invalid": "Invalid cleaning type.",
        "num_rooms_invalid": "Number of rooms must be a positive integer.",
        "date_invalid": "Invalid date format. Use YYYY-MM-DD.",
        "time_invalid": "Invalid time format. Use HH:MM.",
        "budget_invalid": "Proposed budget must be a positive number.",
        "request_id_required": "Request ID is required.",
        "price_invalid": "Adjusted price must be greater than zero.",
        "schedule_window_invalid": "The scheduled end time must be after the start time.",
        "rejection_reason_required": "Rejection reason is required.",
        "request_not_open_for_quotes": "This request no longer accepts quotes.",
        "response_type_invalid": "Valid response type is required.",
        "counter_note_required": "A note is required to renegotiate or counter a quote.",
        "quote_final_status": "Quote already has final status.",
        "quote_superseded": "A newer quote exists for this request.",
        "order_already_completed": "Order already completed.",
        "bill_already_paid": "Bill already paid.",
        "revised_amount_required": "Revised amount is required.",
        "revised_amount_invalid": "Revised amount must be a non-negative number.",
        "dispute_note_required": "Dispute note is required.",
        "status_transition_invalid": "This action is not allowed for the current status.",
        "photos_required": "No photos uploaded.",
        "photo_limit_exceeded": "Maximum number of photos per request exceeded.",
        "photo_type_invalid": "Only image files (jpeg, jpg, png, gif) are allowed.",
        "payload_too_large": "Uploaded files are too large.",
        "order_creation_failed": "The order could not be created. Nothing was changed.",
        "bill_creation_failed": "The bill could not be created. Nothing was changed.",
        "photo_upload_failed": "The photos could not be saved. Nothing was changed.",
        "quote_creation_failed": "The quote could not be saved. Nothing was changed.",
        "response_save_failed": "The response could not be saved. Nothing was changed.",
        "unexpected_error": "Internal server error.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, status: str | None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == status:
            return item["label"]
    return str(status or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)
