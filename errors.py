from typing import Optional


class ClientError(Exception):
    step = 'client'

    def __init__(self, code: Optional[int] = None, message: Optional[str] = None):
        self.code = code
        self.message = message
        super().__init__(self.describe())

    def describe(self) -> str:
        if self.code is not None:
            return f'Error from {self.step}: {self.code}'
        if self.message:
            return f'Error from {self.step}: {self.message}'
        return f'Error from {self.step}'

    @classmethod
    def from_os_error(cls, err: OSError) -> 'ClientError':
        return cls(code=err.errno, message=err.strerror)


class UsageError(ClientError):
    step = 'arguments'


class SetupError(ClientError):
    step = 'socket'


class AddressError(ClientError):
    step = 'inet_pton'


class ConnectError(ClientError):
    step = 'connect'


class SendError(ClientError):
    step = 'send'


class ReceiveError(ClientError):
    step = 'recv'


class ShutdownError(ClientError):
    step = 'shutdown'


class CloseError(ClientError):
    step = 'close'
