"""
Модели задач и хостов развертывания
"""
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Task(BaseModel):
    """Задача: shell-команда с зависимостями, неизменяемая"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Уникальное имя задачи")
    cmd: str = Field(..., min_length=1, description="Shell-команда")
    dir: Optional[str] = Field(None, description="Рабочая директория")
    expect: int = Field(default=0, description="Ожидаемый код возврата")
    message: Optional[str] = Field(None, description="Сообщение при успехе")
    depends_on: Tuple[str, ...] = Field(default_factory=tuple, description="Имена задач-зависимостей")
    lib: bool = Field(default=False, description="Исключается из запуска по умолчанию")
    ask_pass: bool = Field(default=False, alias="askpass", description="Запросить псевдотерминал")
    output: bool = Field(default=False, description="Показывать вывод команды")
    retry: bool = Field(default=False, description="Разрешить повтор при неудаче")

    @field_validator('dir', 'message', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('depends_on', mode='before')
    @classmethod
    def normalize_depends_on(cls, v):
        """Порядок сохраняется, дубликаты отбрасываются"""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(dict.fromkeys(v))


class Host(BaseModel):
    """Описание хоста для SSH подключения"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str = Field(..., min_length=1, description="Адрес сервера")
    username: str = Field(..., min_length=1, description="Имя пользователя")
    password: Optional[str] = Field(None, description="Пароль")
    private_key: Optional[str] = Field(None, description="Путь к приватному ключу")
    env_file: Optional[str] = Field(None, alias="envfile", description="Файл переменных окружения хоста")
    port: int = Field(default=22, ge=1, le=65535, description="Порт SSH")

    @model_validator(mode='after')
    def validate_auth(self) -> 'Host':
        """Нужен пароль или приватный ключ"""
        if not self.password and not self.private_key:
            raise ValueError("password or private_key required")
        return self

    @property
    def identity(self) -> str:
        """Ключ хоста в пуле: user@address"""
        return f"{self.username}@{self.host}"
