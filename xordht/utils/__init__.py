from xordht.utils.asyncio import cancel_and_wait, first_not_none, switch_to_uvloop
from xordht.utils.logging import get_logger, use_xordht_log_style
from xordht.utils.serializer import MSGPackSerializer, SerializerBase
