"""
SOCKS 中继代理 - 混淆编解码模块

版本: 1.0.0

功能概述:
两个代理进程之间的链路上，每个字节都与一个单字节密钥做异或。
异或是自反运算：同一个密钥编码两次即得到原始数据，因此编码和解码
是同一个操作。

注意: 这只是简单的混淆，不提供任何安全性。
"""

DEFAULT_XOR_KEY = 0x64  # 默认混淆密钥


class XorCodec:
    """
    单字节异或编解码器

    构造时预先生成 256 字节的转换表，之后对数据块的处理全部交给
    bytes.translate 完成，热路径上不做逐字节的 Python 运算。

    Attributes:
        key: 混淆密钥（0-255）
    """

    def __init__(self, key: int = DEFAULT_XOR_KEY):
        if not 0 <= key <= 0xFF:
            raise ValueError(f"混淆密钥必须在 0-255 之间: {key}")
        self.key = key
        self._table = bytes(b ^ key for b in range(256))

    def transform_byte(self, value: int) -> int:
        """转换单个字节"""
        return value ^ self.key

    def transform(self, data: bytes) -> bytes:
        """
        转换一个数据块

        Args:
            data: 原始数据（bytes、bytearray 或 memoryview）

        Returns:
            bytes: 转换后的数据
        """
        if isinstance(data, memoryview):
            data = data.tobytes()
        return data.translate(self._table)

    # 编码与解码是同一个运算
    encode = transform
    decode = transform

    def __repr__(self):
        return f"XorCodec(key=0x{self.key:02x})"
