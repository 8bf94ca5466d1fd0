"""meshcall - WebRTC mesh 시그널링 및 협상 조정 계층"""

__version__ = "0.1.0"
