"""
Filing modules for delivering messages through recipients' web forms.
"""

from contact_congress.filers.form_filler import FormDriver, FormFiller, HttpFormDriver

__all__ = [
    "FormDriver",
    "FormFiller",
    "HttpFormDriver",
]
