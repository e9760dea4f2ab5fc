DEFAULT_HOST = "127.0.0.1"
DEFAULT_READ_SIZE = 64 * 1024


class Config:

    def __init__(
            self,
            host=DEFAULT_HOST,
            port=0,
            backlog=None,
            read_size=DEFAULT_READ_SIZE,
            max_buffered_bytes=None,
            timeout_graceful_shutdown=None,
            log_level="info"
    ):
        self.host = host
        self.port = port
        # None -> let the OS pick the listen backlog
        self.backlog = backlog
        self.read_size = read_size
        # None -> no cap on memory held by in-flight buffers
        self.max_buffered_bytes = max_buffered_bytes
        self.timeout_graceful_shutdown = timeout_graceful_shutdown
        self.log_level = log_level
