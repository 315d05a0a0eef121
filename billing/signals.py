from django.dispatch import Signal

# Sent after an invoice row is deleted and its events returned to the unbilled pool.
# kwargs: invoice_id, owner_id, invoice_number, pdf_url
invoice_deleted = Signal()
