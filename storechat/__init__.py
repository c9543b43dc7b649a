"""StoreChat: Shopify chat-widget backend."""
