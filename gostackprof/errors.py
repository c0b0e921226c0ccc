class Error(Exception):
    def __init__(self, message, hint=None):
        super().__init__(message)
        self.message = message
        self.hint = hint

class LoadError(Error):
    pass

class ImageFormatError(LoadError):
    pass

class MissingSectionError(LoadError):
    pass

class PclntabError(LoadError):
    pass

class ProfileParseError(Error):
    pass

class WriteError(Error):
    pass
