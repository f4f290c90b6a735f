"""ordercore: purchase order lifecycle service."""
