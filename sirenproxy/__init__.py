"""WebSocket tunnel server relaying VLESS, Trojan, Shadowsocks and VMess traffic to TCP targets."""

__version__ = "0.1.0"