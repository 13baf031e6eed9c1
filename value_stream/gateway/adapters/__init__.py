from .sink_file import FileSink
from .sink_mqtt import MQTTSink
from .source_rest import RestSourceAdapter

__all__ = ['FileSink', 'MQTTSink', 'RestSourceAdapter']
