"""Сообщения user.UserService, собранные из дескриптора во время импорта.

Повторяет user.proto сервиса пользователей:

    message TokenRequest { string access_token = 1; }
    message UserResponse { string id = 1; string username = 2; string email = 3; }
"""
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_FIELD = descriptor_pb2.FieldDescriptorProto

PACKAGE = "user"
SERVICE = "user.UserService"


def _add_message(file_proto: descriptor_pb2.FileDescriptorProto, name: str, *fields: str) -> None:
    message = file_proto.message_type.add(name=name)
    for number, field_name in enumerate(fields, start=1):
        message.field.add(
            name=field_name,
            number=number,
            type=_FIELD.TYPE_STRING,
            label=_FIELD.LABEL_OPTIONAL,
            json_name=field_name,
        )


def _build_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="gainly/user.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    _add_message(file_proto, "TokenRequest", "access_token")
    _add_message(file_proto, "UserResponse", "id", "username", "email")

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_pool = _build_pool()

TokenRequest = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.TokenRequest"))
UserResponse = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.UserResponse"))
