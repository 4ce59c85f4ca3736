# Schemas shared by the HTTP and WebSocket layers
