ACQUISITION_FAILED = -99


class AcquisitionFailure(Exception):
    """The analyzer could not ingest the image for the current frame."""

    def __init__(self, message: str = "image not available", code: int = ACQUISITION_FAILED):
        super().__init__(message)
        self.code = code
