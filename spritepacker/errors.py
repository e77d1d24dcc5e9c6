class SpritePackerError(Exception):
    pass


class ImageLoadError(SpritePackerError):
    def __init__(self, path, reason=""):
        self.path = str(path)
        self.reason = str(reason)
        message = f"Failed to load image at {self.path}"
        if self.reason:
            message += f": {self.reason}"
        super().__init__(message)


class ImageWriteError(SpritePackerError):
    def __init__(self, path, reason=""):
        self.path = str(path)
        self.reason = str(reason)
        super().__init__(f"Failed to write image at {self.path}: {self.reason}")


class GroupMemberNotFoundError(SpritePackerError):
    def __init__(self, group_key: str, name: str):
        self.group_key = group_key
        self.name = name
        super().__init__(f"Sprite {name} is not a member of group {group_key}")


class UnknownGroupError(SpritePackerError):
    def __init__(self, group_key: str):
        self.group_key = group_key
        super().__init__(f"No duplicate group with key {group_key}")


class AtlasTooSmallError(SpritePackerError):
    """Raised when the rectangles do not fit into the largest allowed atlas."""

    def __init__(self, max_width: int, max_height: int, width: int = 0, height: int = 0):
        self.max_width = max_width
        self.max_height = max_height
        self.width = width
        self.height = height
        if width and height:
            message = (f"Rectangle {width}x{height} does not fit into an atlas "
                       f"of at most {max_width}x{max_height}")
        else:
            message = f"Sprites do not fit into an atlas of at most {max_width}x{max_height}"
        super().__init__(message)


class PlacementWriteError(SpritePackerError):
    def __init__(self, path, reason=""):
        self.path = str(path)
        self.reason = str(reason)
        super().__init__(f"Failed to write atlas output {self.path}: {self.reason}")


class PlacementFormatError(SpritePackerError):
    pass


class SettingsError(SpritePackerError):
    pass


class PackCancelled(SpritePackerError):
    pass
