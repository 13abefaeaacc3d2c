"""Institute administration backend: enquiry funnel tracking and reports."""
