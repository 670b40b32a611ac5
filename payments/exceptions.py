class MpesaError(Exception):
    """Base class for failures talking to the Daraja API."""

    def __init__(self, message, response_data=None):
        super().__init__(message)
        self.response_data = response_data


class MpesaConfigurationError(MpesaError):
    pass


class MpesaAuthenticationError(MpesaError):
    pass


class MpesaRequestError(MpesaError):
    """Raised when a push or query call fails; carries the provider body if any."""

    def provider_detail(self):
        data = self.response_data if isinstance(self.response_data, dict) else {}
        return data.get("errorMessage") or data.get("ResponseDescription")
