# ==============================================================================
# REPOSITORIO BASE - Colecciones guardadas en archivos JSON
# ==============================================================================
# Usado por el backend de referencia (main.py). Una colección = un archivo
# JSON con una lista de registros, cada uno con 'id'.
# ==============================================================================

import json
import os
import threading
import uuid
from typing import Any, Dict, List, Optional

from yubarta.errors import ConflictError, NotFoundError


class JsonCollectionRepository:
    """
    Colección persistida como lista JSON.

    Escritura atómica (archivo temporal + os.replace) y un lock global para
    evitar escrituras concurrentes entre colecciones del mismo proceso.
    """

    # Lock global para evitar escrituras concurrentes a archivos
    _file_lock = threading.RLock()

    def __init__(self, file_path: str):
        """
        Args:
            file_path: Ruta absoluta al archivo JSON de la colección
        """
        self.file_path = file_path
        os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        """Crea el archivo con una lista vacía si no existe."""
        if not os.path.exists(self.file_path):
            self._write_raw([])

    def _read_raw(self) -> List[Dict[str, Any]]:
        with self._file_lock:
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (json.JSONDecodeError, FileNotFoundError):
                # Archivo corrupto o inexistente: colección vacía
                return []
        return data if isinstance(data, list) else []

    def _write_raw(self, data: List[Dict[str, Any]]) -> None:
        with self._file_lock:
            # Escribir a archivo temporal primero para atomicidad
            temp_path = self.file_path + '.tmp'
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self.file_path)
            except Exception:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise

    # =========================================================================
    # CRUD
    # =========================================================================

    def get_all(self) -> List[Dict[str, Any]]:
        return self._read_raw()

    def get_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self._read_raw():
            if str(record.get('id')) == str(record_id):
                return record
        return None

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Agrega un registro. Asigna id (uuid) si no viene.

        Raises:
            ConflictError: ya existe un registro con ese id
        """
        record = dict(data)
        record.setdefault('id', str(uuid.uuid4()))
        with self._file_lock:
            records = self._read_raw()
            if any(str(r.get('id')) == str(record['id']) for r in records):
                raise ConflictError(f"Ya existe un registro con id {record['id']}")
            records.append(record)
            self._write_raw(records)
        return record

    def update(self, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mezcla los campos recibidos sobre el registro existente.

        Raises:
            NotFoundError: el registro no existe
        """
        with self._file_lock:
            records = self._read_raw()
            for record in records:
                if str(record.get('id')) == str(record_id):
                    record.update(data)
                    record['id'] = record_id
                    self._write_raw(records)
                    return record
        raise NotFoundError(f'Registro {record_id} no encontrado')

    def delete(self, record_id: str) -> None:
        with self._file_lock:
            records = self._read_raw()
            remaining = [r for r in records if str(r.get('id')) != str(record_id)]
            if len(remaining) == len(records):
                raise NotFoundError(f'Registro {record_id} no encontrado')
            self._write_raw(remaining)
