"""DocVault Engine — configuration, error hierarchy and structured logging."""
