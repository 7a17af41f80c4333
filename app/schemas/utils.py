"""Annotations Pydantic réutilisables pour validation.

Ce module centralise les types annotés pour assurer la cohérence
de la validation à travers tous les schémas Pydantic du service.
"""

from typing import Annotated

from pydantic import Field, StringConstraints

# Types de base avec validation
PositiveInt = Annotated[int, Field(gt=0, description="Entier positif")]
NonNegativeInt = Annotated[int, Field(ge=0, description="Entier non-négatif")]

# Chaînes avec contraintes
NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]

# Identifiants (UUID du store distant)
RowId = Annotated[str, StringConstraints(min_length=1, max_length=64, strip_whitespace=True)]

# Métadonnées
Description = Annotated[str, Field(max_length=2000, description="Description texte")]
Title = Annotated[str, Field(min_length=1, max_length=255, description="Titre")]

# Filtres de dashboard ("all" = pas de filtre)
FilterValue = Annotated[str, Field(description="Valeur du filtre ou 'all'")]
