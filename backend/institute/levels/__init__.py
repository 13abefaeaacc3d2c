"""Enquiry level tracking: ledger, transition rules, time windows and aggregation."""
