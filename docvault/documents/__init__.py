"""
DocVault Documents — upload validation, upload/mutation service and
secure file delivery.

Import from the submodules directly:
    from docvault.documents.service import DocumentService
    from docvault.documents.delivery import FileDeliveryService
"""
