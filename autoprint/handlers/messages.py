"""Payer-facing message texts."""

def quote_ready(file_name: str, pages: int, cost: float, currency: str = "INR") -> str:
    return (
        "📄 *Print Quote Ready*\n\n"
        f"File: {file_name or 'your document'}\n"
        f"Pages: {pages}\n"
        f"Cost: {currency} {cost:g}\n\n"
        'Reply "confirm" to proceed with payment\n'
        'Reply "cancel" to cancel this job\n\n'
        "⏱️ Quote valid for 30 minutes"
    )

def processing_failed(file_name: str) -> str:
    return (
        f"❌ Sorry, there was an error processing your file{f' ({file_name})' if file_name else ''}.\n"
        "Please try again or contact support."
    )

def retrying(stage: str, attempt: int, max_attempts: int) -> str:
    return (
        f"⏳ We hit a problem while {stage} your document.\n"
        f"Retrying automatically (attempt {attempt + 1} of {max_attempts})."
    )

def printing_started(estimated_minutes: int) -> str:
    return (
        "🖨️ *Printing Started*\n\n"
        "Your document is now being printed!\n"
        f"Estimated time: {estimated_minutes} minutes\n\n"
        "You'll receive an update when it's ready for collection."
    )

def print_completed() -> str:
    return (
        "✅ *Print Job Completed!*\n\n"
        "Your document is ready for collection.\n"
        "Please collect it from the print station.\n\n"
        "Thank you for using AutoPrint! 🎓"
    )

def print_failed(refund_eligible: bool) -> str:
    text = (
        "❌ *Print Job Failed*\n\n"
        "There was an error printing your document.\n"
        "Please contact support for assistance."
    )
    if refund_eligible:
        text += "\n\nYour payment is eligible for a refund and will be refunded."
    return text

def payment_received(amount: float, currency: str = "INR") -> str:
    return (
        "💳 *Payment Received*\n\n"
        f"Amount: {currency} {amount:g}\n"
        "Your document has been added to the print queue."
    )

def job_cancelled() -> str:
    return "🚫 Your print job has been cancelled."
