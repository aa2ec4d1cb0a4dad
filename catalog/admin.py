from django.contrib import admin
from .models import Parameter, ParameterValue, Product, ProductParameter


class ProductParameterInline(admin.TabularInline):
    model = ProductParameter
    raw_id_fields = ("value",)
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "price", "updated_at")
    search_fields = ("name", "description")
    ordering = ("id",)
    readonly_fields = ("created_at", "updated_at")
    inlines = (ProductParameterInline,)


@admin.register(Parameter)
class ParameterAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "is_filterable", "sort_order")
    list_filter = ("is_filterable",)
    list_editable = ("is_filterable", "sort_order")
    search_fields = ("name", "slug")
    ordering = ("sort_order", "name")


@admin.register(ParameterValue)
class ParameterValueAdmin(admin.ModelAdmin):
    list_display = ("id", "parameter", "value", "numeric_value")
    list_filter = ("parameter",)
    search_fields = ("value", "parameter__name")
    list_select_related = ("parameter",)


admin.site.register(ProductParameter)
