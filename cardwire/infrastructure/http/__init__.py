"""HTTP access to the card API: request execution, pagination and batches."""
