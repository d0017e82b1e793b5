class IngestError(Exception):
    """Falha do lote, respondida como ``{"success": false, "error": message}``."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MethodNotAllowed(IngestError):
    status_code = 405

    def __init__(self, message: str = "Method not allowed. Use POST."):
        super().__init__(message)


class MissingGatewayMac(IngestError):
    status_code = 400

    def __init__(self):
        super().__init__(
            "Missing gateway MAC address. Please set gateway_mac query parameter "
            "or x-gateway-mac header."
        )


class InvalidRequestBody(IngestError):
    status_code = 400


class GatewayNotRegistered(IngestError):
    status_code = 404

    def __init__(self, mac: str):
        super().__init__(f"Gateway not registered: {mac}. Please register the gateway first.")
        self.mac = mac


class IngestTimeout(IngestError):
    status_code = 504

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Ingestion did not complete within {timeout_seconds:g} seconds.")
        self.timeout_seconds = timeout_seconds


class IngestFailed(IngestError):
    status_code = 500

    def __init__(self, message: str = "Internal server error. Please check logs."):
        super().__init__(message)
