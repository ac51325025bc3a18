from typing import NewType

S3Key = NewType('S3Key', str)

QueryString = dict[str, list[str]]
HeaderMap = dict[str, str]
