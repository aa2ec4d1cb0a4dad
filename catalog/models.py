from django.db import models


class Product(models.Model):
    # Ids come from the supplier feed and stay stable across imports.
    id = models.BigIntegerField(primary_key=True)
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    description = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["price", "id"], name="product_price_id_idx"),
        ]

    def __str__(self):
        return self.name


class Parameter(models.Model):
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)
    is_filterable = models.BooleanField(default=True, db_index=True)
    sort_order = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["sort_order", "name"]

    def __str__(self):
        return self.name


class ParameterValue(models.Model):
    parameter = models.ForeignKey(Parameter, on_delete=models.CASCADE, related_name="values")
    value = models.CharField(max_length=255)
    # Numeric projection of `value` for range use; null when not a number.
    numeric_value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["parameter", "value"]
        constraints = [
            models.UniqueConstraint(fields=["parameter", "value"], name="unique_value_per_parameter")
        ]
        indexes = [
            models.Index(fields=["parameter", "numeric_value"], name="value_numeric_idx"),
        ]

    def __str__(self):
        return f"{self.parameter.name}: {self.value}"


class ProductParameter(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="parameter_links")
    value = models.ForeignKey(ParameterValue, on_delete=models.CASCADE, related_name="product_links")

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["product", "value"], name="unique_product_value")
        ]
        indexes = [
            models.Index(fields=["value", "product"], name="link_value_product_idx"),
        ]

    def __str__(self):
        return f"{self.product_id} -> {self.value_id}"
